from __future__ import annotations

from datetime import UTC, datetime

from shopledger.domain.dedup import dedupe_by_key, prefer_richer
from tests.fixtures.orders import create_line_fact, create_order_fact

OCT_5 = datetime(2024, 10, 5, tzinfo=UTC)
OCT_9 = datetime(2024, 10, 9, tzinfo=UTC)


class TestPreferRicher:
    def test_refund_date_beats_missing_date(self) -> None:
        # input
        bare = create_order_fact(refunded_qty=3)
        dated = create_order_fact(refund_date=OCT_5, refunded_qty=1)

        # act / assert
        assert prefer_richer(bare, dated) is dated
        assert prefer_richer(dated, bare) is dated

    def test_higher_refunded_quantity_wins(self) -> None:
        one = create_order_fact(refund_date=OCT_5, refunded_qty=1)
        two = create_order_fact(refund_date=OCT_5, refunded_qty=2)

        assert prefer_richer(two, one) is two
        assert prefer_richer(one, two) is two

    def test_later_refund_date_wins_on_equal_quantity(self) -> None:
        early = create_order_fact(refund_date=OCT_5, refunded_qty=1)
        late = create_order_fact(refund_date=OCT_9, refunded_qty=1)

        assert prefer_richer(late, early) is late
        assert prefer_richer(early, late) is late

    def test_full_tie_keeps_the_candidate(self) -> None:
        first = create_order_fact(gross="100.00")
        second = create_order_fact(gross="200.00")

        assert prefer_richer(first, second) is second


class TestDedupeByKey:
    def test_collapses_duplicates_and_keeps_order(self) -> None:
        """
        Order 1 appears twice (once bare, once refunded) around order 2.

        The refunded copy wins and order 1 keeps its first-seen position.
        """
        # input
        facts = [
            create_order_fact(order_id="1"),
            create_order_fact(order_id="2"),
            create_order_fact(order_id="1", refund_date=OCT_5, refunded_qty=1),
        ]

        # act
        result = dedupe_by_key(facts)

        # assert
        assert [fact.order_id for fact in result] == ["1", "2"]
        assert result[0].refund_date == OCT_5

    def test_line_facts_keyed_by_sku(self) -> None:
        facts = [
            create_line_fact(sku="A"),
            create_line_fact(sku="B"),
            create_line_fact(sku="A", refund_date=OCT_9, refunded_qty=1),
        ]

        result = dedupe_by_key(facts)

        assert len(result) == 2
        by_sku = {fact.sku: fact for fact in result}
        assert by_sku["A"].refunded_qty == 1

    def test_same_order_different_tenants_both_kept(self) -> None:
        facts = [
            create_order_fact(tenant="pompdelux-da"),
            create_order_fact(tenant="pompdelux-de"),
        ]

        assert len(dedupe_by_key(facts)) == 2

    def test_empty_input(self) -> None:
        assert dedupe_by_key([]) == []

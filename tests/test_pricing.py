import unittest

from thinklab.daemon.errors import UnknownActionKind
from thinklab.daemon.pricing import ActionKind, DEFAULT_PRICES, PricingTable, parse_action_kind


class PricingTableTests(unittest.TestCase):
    def test_default_prices(self):
        table = PricingTable()
        self.assertEqual(table.cost(ActionKind.TEXT_GENERATION), 5)
        self.assertEqual(table.cost(ActionKind.IMAGE_GENERATION), 10)
        self.assertEqual(table.cost(ActionKind.CODE_GENERATION), 8)
        self.assertEqual(table.cost(ActionKind.DATA_ANALYSIS), 15)
        self.assertEqual(table.cost(ActionKind.TEXT_SUMMARIZATION), 3)
        self.assertEqual(table.cost(ActionKind.SEO_OPTIMIZATION), 12)

    def test_cost_is_pure(self):
        table = PricingTable()
        self.assertEqual(table.cost("data-analysis"), table.cost("data-analysis"))

    def test_wire_names_accept_underscores(self):
        self.assertIs(parse_action_kind("text_generation"), ActionKind.TEXT_GENERATION)
        self.assertIs(parse_action_kind(" SEO-Optimization "), ActionKind.SEO_OPTIMIZATION)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(UnknownActionKind) as ctx:
            PricingTable().cost("video-generation")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.to_payload()["error"], "unknown_action_kind")

    def test_kind_missing_from_custom_table_rejected(self):
        table = PricingTable({"text-generation": 2})
        self.assertEqual(table.cost("text-generation"), 2)
        with self.assertRaises(UnknownActionKind):
            table.cost(ActionKind.IMAGE_GENERATION)

    def test_non_positive_price_rejected(self):
        with self.assertRaises(ValueError):
            PricingTable({"text-generation": 0})

    def test_as_dict_uses_wire_names(self):
        prices = PricingTable().as_dict()
        self.assertEqual(set(prices), {str(k) for k in DEFAULT_PRICES})
        self.assertEqual(prices["text-summarization"], 3)


if __name__ == "__main__":
    unittest.main()

import unittest
from pathlib import Path

from dealersync.extraction.fields import (
    FieldExtractor,
    clean_number,
    clean_price,
    coerce_fields,
    extract_labeled_fields,
    find_vin_in_text,
    normalize_vin,
    parse_title,
)
from dealersync.pages import PageData

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _page(html: str, url: str = "https://dealer.example.com/listing/1") -> PageData:
    return PageData(url=url, html=html)


class CleanNumberTestCase(unittest.TestCase):
    def test_strips_currency_separators_and_units(self) -> None:
        self.assertEqual(clean_number("$34,995"), 34995.0)
        self.assertEqual(clean_number("45,000 km"), 45000.0)
        self.assertEqual(clean_number("12 mi"), 12.0)
        self.assertEqual(clean_number("32,100 mi."), 32100.0)
        self.assertEqual(clean_number(1500), 1500.0)

    def test_unparseable_values_are_none(self) -> None:
        self.assertIsNone(clean_number("Call for price"))
        self.assertIsNone(clean_number(""))
        self.assertIsNone(clean_number(None))
        self.assertIsNone(clean_number(True))

    def test_price_must_be_positive(self) -> None:
        self.assertEqual(clean_price("$21,450"), 21450)
        self.assertIsNone(clean_price("$0"))


class VinTestCase(unittest.TestCase):
    def test_normalize_vin_accepts_valid_and_uppercases(self) -> None:
        self.assertEqual(normalize_vin("salws2ru3ma767985"), "SALWS2RU3MA767985")
        self.assertEqual(normalize_vin("SALWS2RU3-MA767985"), "SALWS2RU3MA767985")

    def test_normalize_vin_rejects_invalid(self) -> None:
        self.assertIsNone(normalize_vin("SALWS2RU3MA76798"))
        self.assertIsNone(normalize_vin("SALWS2RU3MA76798O"))
        self.assertIsNone(normalize_vin(None))

    def test_find_vin_in_text(self) -> None:
        self.assertEqual(find_vin_in_text("Stock 12 | VIN: KMHLM4AG5PU123456 | Call"), "KMHLM4AG5PU123456")
        self.assertIsNone(find_vin_in_text("No identifier here"))

    def test_malformed_vin_is_dropped_with_warning(self) -> None:
        warnings: list[str] = []
        cleaned = coerce_fields({"vin": "NOT-A-VIN", "make": "Ford"}, warnings)
        self.assertNotIn("vin", cleaned)
        self.assertEqual(cleaned["make"], "Ford")
        self.assertEqual(len(warnings), 1)


class ParseTitleTestCase(unittest.TestCase):
    def test_splits_year_make_model(self) -> None:
        self.assertEqual(
            parse_title("2023 Hyundai Elantra"),
            {"year": "2023", "make": "Hyundai", "model": "Elantra"},
        )

    def test_multi_word_model(self) -> None:
        self.assertEqual(parse_title("2020  Honda Civic EX")["model"], "Civic EX")

    def test_condition_prefix_is_ignored(self) -> None:
        self.assertEqual(parse_title("Used 2021 Toyota RAV4 XLE")["year"], "2021")
        self.assertEqual(parse_title("Certified Pre-Owned 2019 Kia Soul")["make"], "Kia")

    def test_non_matching_title(self) -> None:
        self.assertEqual(parse_title("Great deals on used cars"), {})
        self.assertEqual(parse_title(None), {})


class LabeledFieldsTestCase(unittest.TestCase):
    def test_first_cell_is_label_last_cell_is_value(self) -> None:
        html = """
        <table>
          <tr><th>Odometer:</th><td>12,000 km</td></tr>
          <tr><th>Exterior Colour</th><td>Red</td></tr>
          <tr><th>Warranty</th><td>None</td></tr>
          <tr><td>lonely cell</td></tr>
        </table>
        """
        found = extract_labeled_fields(_page(html).soup)
        self.assertEqual(found, {"mileage": "12,000 km", "exterior_color": "Red"})

    def test_definition_list_pairs(self) -> None:
        html = """
        <dl>
          <dt>Stock #:</dt><dd>MZ4410</dd>
          <dt>MPG:</dt><dd>24 city / 30 hwy</dd>
          <dt>Drivetrain:</dt><dd>All-Wheel Drive</dd>
          <dt>Engine:</dt>
        </dl>
        """
        found = extract_labeled_fields(_page(html).soup)
        self.assertEqual(found, {"stock_number": "MZ4410", "drivetrain": "All-Wheel Drive"})


class FieldExtractorTestCase(unittest.TestCase):
    def test_title_fallback_populates_year_make_model(self) -> None:
        html = (FIXTURES / "title_only_listing.html").read_text(encoding="utf-8")
        record = FieldExtractor().extract(_page(html))

        self.assertEqual(record.year, "2023")
        self.assertEqual(record.make, "Hyundai")
        self.assertEqual(record.model, "Elantra")
        self.assertEqual(record.vin, "KMHLM4AG5PU123456")
        self.assertIsNone(record.price)

    def test_structured_data_wins_over_labeled_rows(self) -> None:
        html = """
        <html><body>
          <h1>2018 Wrong Title</h1>
          <table><tr><td>Make</td><td>Mazda</td></tr><tr><td>Mileage</td><td>9,000 km</td></tr></table>
          <script id="__NEXT_DATA__" type="application/json">{"v": {"make": "Kia", "model": "Soul", "year": 2022}}</script>
        </body></html>
        """

        def mapper(page: PageData) -> dict:
            return dict(page.structured_data["v"])

        record = FieldExtractor(structured_mapper=mapper).extract(_page(html))

        self.assertEqual(record.make, "Kia")
        self.assertEqual(record.model, "Soul")
        self.assertEqual(record.year, "2022")
        self.assertEqual(record.mileage, 9000)

    def test_inconsistent_structured_data_is_ignored(self) -> None:
        html = """
        <html><body>
          <table><tr><td>Year</td><td>2017</td></tr><tr><td>Make</td><td>Subaru</td></tr>
          <tr><td>Model</td><td>Outback</td></tr></table>
          <script id="__NEXT_DATA__" type="application/json">{"v": {"make": "Kia", "model": "Soul", "year": "20X2"}}</script>
        </body></html>
        """

        def mapper(page: PageData) -> dict:
            return dict(page.structured_data["v"])

        record = FieldExtractor(structured_mapper=mapper).extract(_page(html))

        self.assertEqual((record.year, record.make, record.model), ("2017", "Subaru", "Outback"))

    def test_selector_fields_fill_gaps(self) -> None:
        html = '<html><body><h1>2021 Ford F-150</h1><span class="amount">$48,000</span></body></html>'
        extractor = FieldExtractor(selector_fields={"price": (".missing", ".amount")})

        record = extractor.extract(_page(html))

        self.assertEqual(record.price, 48000)
        self.assertEqual(record.model, "F-150")


if __name__ == "__main__":
    unittest.main()

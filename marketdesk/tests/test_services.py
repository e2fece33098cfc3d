import io
import unittest

from PIL import Image

from marketdesk.auth import AuthSession, AuthUser
from marketdesk.db import InMemoryCollectionStore
from marketdesk.errors import RecordValidationError
from marketdesk.exports import export_csv, export_pdf, export_png, table_rows
from marketdesk.records import MarketDataEntry
from marketdesk.services import (
    InsightService,
    MarketDataFileService,
    MarketDataService,
    PostService,
    admin_stats,
    dashboard_summary,
    search_rows,
)


class ServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryCollectionStore()
        self.session = AuthSession(AuthUser("u1", "admin@example.com", "authenticated"), "tok", True)

    def test_market_data_requires_category_and_value(self):
        service = MarketDataService(self.store)
        with self.assertRaises(RecordValidationError) as ctx:
            service.insert(category="", value=1.0)
        self.assertEqual(str(ctx.exception), "Category and value are required")
        with self.assertRaises(RecordValidationError):
            service.insert(category="fuel", value=None)
        self.assertEqual(self.store.count("market_data"), 0)

    def test_market_data_insert_records_author(self):
        entry = MarketDataService(self.store).insert(
            category="fuel", value=180.5, session=self.session, city="Mombasa"
        )
        self.assertEqual(entry.user_id, "u1")
        self.assertEqual(entry.user_email, "admin@example.com")
        self.assertEqual(entry.city, "Mombasa")

    def test_market_data_update_requires_id(self):
        with self.assertRaises(RecordValidationError) as ctx:
            MarketDataService(self.store).update(None, value=2.0)
        self.assertEqual(str(ctx.exception), "ID is required for update")

    def test_market_data_update_skips_unset_fields(self):
        service = MarketDataService(self.store)
        entry = service.insert(category="fuel", value=1.0, city="Kisumu")
        updated = service.update(entry.id, value=2.0, city=None)
        self.assertEqual(updated.value, 2.0)
        self.assertEqual(updated.city, "Kisumu")

    def test_create_post_records_author(self):
        service = PostService(self.store)
        post = service.create_post(self.session, title="Power tariffs", body="", category="energy")
        fetched = service.get_post(post.id)
        self.assertEqual(fetched.title, "Power tariffs")
        self.assertEqual(fetched.author_id, "u1")
        self.assertEqual(fetched.post_type, "blog")
        self.assertIsNone(service.get_post("missing"))
        with self.assertRaises(RecordValidationError):
            service.create_post(self.session, title="  ", body="", category="x")

    def test_insight_save_validates_and_updates(self):
        service = InsightService(self.store)
        with self.assertRaises(RecordValidationError) as ctx:
            service.save(title="t", content="", author="a")
        self.assertEqual(str(ctx.exception), "Title, content, and author are required")

        insight = service.save(title=" Outlook ", content="c", author="Ann")
        self.assertEqual(insight.title, "Outlook")
        self.assertEqual(insight.category, "general")

        updated = service.save(title="Outlook", content="c2", author="Ann", is_featured=True, insight_id=insight.id)
        self.assertTrue(updated.is_featured)
        self.assertEqual(service.featured().id, insight.id)
        self.assertIsNone(service.save(title="x", content="y", author="z", insight_id="missing"))

    def test_market_data_file_requires_fields(self):
        service = MarketDataFileService(self.store)
        with self.assertRaises(RecordValidationError) as ctx:
            service.add(title="Prices", google_sheets_url="")
        self.assertEqual(str(ctx.exception), "Please fill in all required fields")

        record = service.add(title="Prices", google_sheets_url="https://docs.google.com/x", data_type="raw")
        self.assertEqual(record.filename, "Prices")
        self.assertEqual([f.id for f in service.list_files()], [record.id])
        self.assertTrue(service.delete(record.id))

    def test_dashboard_uses_fallback_without_market_data(self):
        summary = dashboard_summary(self.store)
        self.assertIsNone(summary["featured_insight"])
        self.assertEqual(summary["latest_insights"], [])
        self.assertEqual(summary["market_data"].id, "fallback")

    def test_dashboard_latest_insights_limited(self):
        service = InsightService(self.store)
        for n in range(6):
            self.store.insert("insights", {"id": str(n), "title": "t", "content": "c", "created_at": float(n)})
        summary = dashboard_summary(self.store)
        self.assertEqual([i.id for i in summary["latest_insights"]], ["5", "4", "3", "2"])
        self.assertEqual(len(service.list_insights()), 6)

    def test_admin_stats(self):
        self.store.insert("profiles", {"id": "p1", "email": "a@example.com"})
        MarketDataService(self.store).insert(category="fuel", value=1.0)
        self.assertEqual(admin_stats(self.store), {"insights": 0, "market_data": 1, "users": 1})

    def test_search_rows_matches_any_field(self):
        rows = [
            {"id": "1", "category": "Fuel", "city": "Nairobi", "price": 200},
            {"id": "2", "category": "Power", "city": None, "price": 25},
        ]
        self.assertEqual([r["id"] for r in search_rows(rows, "nairobi")], ["1"])
        self.assertEqual([r["id"] for r in search_rows(rows, "25")], ["2"])
        self.assertEqual(search_rows(rows, ""), rows)


class ExportTests(unittest.TestCase):
    def setUp(self):
        self.records = [
            MarketDataEntry(
                id="a", category="fuel", value=1.0, date="2024-01-02", item="Petrol",
                city="Nairobi", price=200.0, images=["market/a.png", "market/b.png"],
            ),
            MarketDataEntry(id="b", category="power", value=2.0, price=25.5),
        ]

    def test_table_rows_format_price(self):
        rows = table_rows(self.records)
        self.assertEqual(rows[0], ("fuel", "2024-01-02", "Petrol", "Nairobi", "KSh 200"))
        self.assertEqual(rows[1][4], "KSh 25.5")

    def test_csv_has_all_persisted_fields(self):
        text = export_csv(self.records).decode("utf-8")
        header, first = text.splitlines()[:2]
        self.assertIn("category", header.split(","))
        self.assertNotIn("image_urls", header.split(","))
        self.assertIn("market/a.png;market/b.png", first)

    def test_csv_empty(self):
        self.assertEqual(export_csv([]), b"")

    def test_png_table(self):
        image = Image.open(io.BytesIO(export_png(self.records)))
        self.assertEqual(image.format, "PNG")
        self.assertGreater(image.height, 28 * 2)

    def test_pdf_page(self):
        data = export_pdf(self.records)
        self.assertTrue(data.startswith(b"%PDF"))


if __name__ == "__main__":
    unittest.main()

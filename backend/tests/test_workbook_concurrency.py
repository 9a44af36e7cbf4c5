# Overview: Workbook-backed ledger under concurrent writers; counters in SQLite, grid in an .xlsx file.

"""
Exercises the production wiring (WorkbookGrid, DatabasePropertyStore)
instead of the in-memory collaborators used elsewhere.
"""
import os
import re
import tempfile
import threading
import unittest

from gridledger import create_app
from gridledger.extensions import db
from gridledger.services import cash_service, estimate_service, record_service
from gridledger.services.context import build_context
from gridledger.services.grid_storage import WorkbookGrid
from gridledger.services.record_store import RecordStore

from conftest import estimate_payload


DEPOSIT_ID = re.compile(r"^DEP-\d{8}-(\d{5})$")


class WorkbookConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.workbook_path = os.path.join(self.tmpdir.name, "ledger.xlsx")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{os.path.join(self.tmpdir.name, 'counters.db')}",
            "GRID_BACKEND": "workbook",
            "WORKBOOK_PATH": self.workbook_path,
            "PROPERTY_BACKEND": "database",
            "CACHE_BACKEND": "memory",
            "SAVE_FOLDER": os.path.join(self.tmpdir.name, "documents"),
            "STORE_LOCK_TIMEOUT_SECONDS": 10.0,
            "SEQUENCE_LOCK_TIMEOUT_SECONDS": 10.0,
            "INFERENCE_API_KEY": "",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _reopened_store(self, key):
        """Read a store back from the file, bypassing the app's open workbook."""
        ctx = build_context(self.app.config, grid=WorkbookGrid(self.workbook_path))
        return RecordStore.open(ctx, key)

    def test_concurrent_deposits_get_unique_ids(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker(n):
            with self.app.app_context():
                try:
                    ctx = self.app.extensions["gridledger"]
                    result = cash_service.save_deposit(ctx, {"amount": n, "client": f"client-{n}"})
                    with lock:
                        if result.success:
                            created.append(result.id)
                        else:
                            errors.append(result.message)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertFalse(errors)
        self.assertEqual(len(created), len(set(created)))
        suffixes = sorted(int(DEPOSIT_ID.match(i).group(1)) for i in created)
        self.assertEqual(suffixes, list(range(1, 9)))

        with self.app.app_context():
            stored = self._reopened_store("deposit").records()
        self.assertEqual(sorted(r.id for r in stored), sorted(created))
        self.assertEqual(sorted(r.get("amount") for r in stored), list(range(1, 9)))

    def test_estimate_survives_reload_and_scoped_delete(self):
        with self.app.app_context():
            ctx = self.app.extensions["gridledger"]
            saved = estimate_service.save_estimate(ctx, estimate_payload())
            self.assertTrue(saved.success)

            estimates = self._reopened_store("estimate").records()
            self.assertEqual([r.id for r in estimates], [saved.id])
            self.assertEqual(estimates[0].items[0]["product"], "クロス張替")

            deleted = record_service.delete_record(ctx, saved.id, "estimate")
            self.assertTrue(deleted.success)

            self.assertEqual(self._reopened_store("estimate").records(), [])
            self.assertEqual(len(self._reopened_store("order").records()), 1)

    def test_counters_persist_in_database(self):
        with self.app.app_context():
            ctx = self.app.extensions["gridledger"]
            first = estimate_service.save_estimate(ctx, estimate_payload())

            # a fresh context shares only the database
            other = build_context(self.app.config, grid=WorkbookGrid(self.workbook_path))
            second = estimate_service.save_estimate(other, estimate_payload())

        self.assertEqual(first.id, "0000001-00")
        self.assertEqual(second.id, "0000002-00")


if __name__ == "__main__":
    unittest.main()

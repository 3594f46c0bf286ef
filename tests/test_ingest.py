import io
import json
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock, patch

from dealersync.ingest import build_arg_parser, build_config, main
from dealersync.jobs import JobTransitionError
from dealersync.orchestrator import BatchItem, BatchReport


def _runtime_mock() -> MagicMock:
    runtime = MagicMock()
    runtime.__enter__.return_value = runtime
    return runtime


class ArgParserTestCase(unittest.TestCase):
    def test_scrape_arguments(self) -> None:
        args = build_arg_parser().parse_args(
            ["scrape", "https://www.cars.com/vehicledetail/abc/", "--org", "org-1", "--site", "carscom", "--use-browser"]
        )

        self.assertEqual(args.command, "scrape")
        self.assertEqual(args.urls, ["https://www.cars.com/vehicledetail/abc/"])
        self.assertEqual(args.site, "carscom")

        config = build_config(args)
        self.assertTrue(config.browser.enabled)

    def test_proxy_argument_is_validated(self) -> None:
        args = build_arg_parser().parse_args(["scrape", "u", "--org", "o", "--proxy", "bad-endpoint"])

        with self.assertRaises(ValueError):
            build_config(args)


class MainTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.log_dir = self._tmp.name

    def tearDown(self) -> None:
        self._tmp.cleanup()

    @patch("dealersync.ingest.build_runtime")
    def test_scrape_reads_urls_file_and_prints_report(self, build_runtime: MagicMock) -> None:
        runtime = _runtime_mock()
        report = BatchReport()
        report.add(BatchItem(url="https://dealer.example.com/a", status="success", vehicle_id="v1", title="t"))
        report.add(BatchItem(url="https://dealer.example.com/b", status="failed", error="x", error_type="PageLoadError"))
        runtime.orchestrator.run_batch.return_value = report
        build_runtime.return_value = runtime

        urls_file = Path(self.log_dir) / "urls.txt"
        urls_file.write_text("https://dealer.example.com/a\n# comment\n\nhttps://dealer.example.com/b\n", encoding="utf-8")

        stdout = io.StringIO()
        with redirect_stdout(stdout):
            exit_code = main(["scrape", "--urls-file", str(urls_file), "--org", "org-1", "--log-dir", self.log_dir])

        self.assertEqual(exit_code, 1)
        runtime.orchestrator.run_batch.assert_called_once_with(
            ["https://dealer.example.com/a", "https://dealer.example.com/b"], "org-1", None, None
        )
        self.assertEqual(json.loads(stdout.getvalue())["failed"], 1)

    @patch("dealersync.ingest.build_runtime")
    def test_sweep_command(self, build_runtime: MagicMock) -> None:
        runtime = _runtime_mock()
        runtime.scheduler.sweep_stuck.return_value = []
        build_runtime.return_value = runtime

        with redirect_stdout(io.StringIO()):
            self.assertEqual(main(["sweep", "--log-dir", self.log_dir]), 0)
        runtime.scheduler.sweep_stuck.assert_called_once_with()

    @patch("dealersync.ingest.build_runtime")
    def test_requeue_conflict_exits_nonzero(self, build_runtime: MagicMock) -> None:
        runtime = _runtime_mock()
        runtime.scheduler.requeue.side_effect = JobTransitionError("scheduled")
        build_runtime.return_value = runtime

        self.assertEqual(main(["requeue", "job-1", "--log-dir", self.log_dir]), 1)

    def test_scrape_without_urls_is_a_usage_error(self) -> None:
        with self.assertRaises(SystemExit):
            main(["scrape", "--org", "org-1", "--log-dir", self.log_dir])


if __name__ == "__main__":
    unittest.main()

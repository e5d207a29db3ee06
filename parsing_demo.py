"""
Example: parse a saved discussion page with the full pipeline (SQLite job record + local storage).

Usage:
    python3 parsing_demo.py --html /path/to/Talk_Page.html --page "Talk:Main Page" --user Alice
"""

import argparse
import json
import logging
from pathlib import Path

from discussion_reader.parsing import (
    DiscussionParsingEngine,
    LocalPageStorage,
    ParseJobPhase,
    ParseJobRecord,
    ParseJobState,
    ParsingWorker,
    SqlAlchemyParsingRepository,
    StoragePaths,
)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--html", required=True, type=Path, help="Path to rendered page HTML")
    parser.add_argument("--page", required=True, help="Page name, e.g. 'Talk:Main Page'")
    parser.add_argument("--user", default=None, help="Current user name (sets own/toMe)")
    parser.add_argument("--config", default=None, type=Path, help="JSON file with parse configuration")
    parser.add_argument("--job-id", default="job-demo", help="Job id (for DB/paths)")
    parser.add_argument("--db", default=Path("./data/discussion_reader.db"), type=Path, help="SQLite DB path")
    parser.add_argument("--storage-root", default=Path("./data"), type=Path, help="Storage root for pages/outputs")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.html.exists():
        raise FileNotFoundError(f"HTML not found: {args.html}")
    config = json.loads(args.config.read_text(encoding="utf-8")) if args.config else {}

    storage = LocalPageStorage(StoragePaths(args.storage_root))
    storage.save_page_html(args.job_id, args.html.read_text(encoding="utf-8", errors="replace"))

    args.db.parent.mkdir(parents=True, exist_ok=True)
    repo = SqlAlchemyParsingRepository(f"sqlite+pysqlite:///{args.db}")
    worker = ParsingWorker(
        repository=repo,
        storage=storage,
        engine=DiscussionParsingEngine(),
        persist_engine_output=True,
    )

    job = ParseJobRecord(
        id=args.job_id,
        page_name=args.page,
        state=ParseJobState.QUEUED,
        phase=ParseJobPhase.PRECHECK,
        config_json=config,
        globals_json={"currentPageName": args.page, "currentUserName": args.user},
    )
    repo.save_job(job)

    print(f"Starting parse job {args.job_id} for {args.html}")
    result = worker.run_job(args.job_id)
    final_job = repo.get_job(args.job_id)
    print(f"Job finished with state={final_job.state}, error={final_job.error_message}")
    print(json.dumps(result.to_message(), ensure_ascii=False, indent=2))
    print(f"Parse output written to {storage.paths.parse_output_path(args.job_id)}")


if __name__ == "__main__":
    main()

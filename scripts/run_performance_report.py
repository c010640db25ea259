import argparse
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def resolve_db_path(override: Optional[str]) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    env_path = os.getenv("DB_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path("/var/data/coaching_engine.db").resolve()


def archive_path(archive_dir: Path, period: str, now: datetime) -> Path:
    return archive_dir / f"performance_report_{period}_{now.strftime('%Y%m%dT%H%M%SZ')}.json"


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate per-model AI performance reports. Meant to be run by an external scheduler."
    )
    parser.add_argument(
        "--period",
        choices=["daily", "weekly", "monthly"],
        default="daily",
        help="Lookback window for the report.",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override SQLite DB path. Defaults to DB_PATH env or app default.",
    )
    parser.add_argument(
        "--archive-dir",
        default=None,
        help="Write the report as a timestamped JSON file into this directory.",
    )
    args = parser.parse_args()

    db_path = resolve_db_path(args.db_path)
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1

    # The engine is built at import time from DB_PATH.
    os.environ["DB_PATH"] = str(db_path)
    from coaching_engine.core.entities import ReportPeriod
    from coaching_engine.db.session import configure_database
    from coaching_engine.services.performance_monitor import get_performance_monitor

    configure_database(str(db_path))
    monitor = get_performance_monitor()
    reports = monitor.generate_performance_report(ReportPeriod(args.period))
    payload = {
        "period": args.period,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "reports": [report.model_dump(mode="json") for report in reports],
    }

    print(f"Target DB: {db_path}")
    for report in reports:
        metrics = report.metrics
        print(
            f"  {report.model}: requests={metrics.total_requests} "
            f"success_rate={metrics.success_rate:.2%} "
            f"avg_response_ms={metrics.average_response_time:.0f} "
            f"satisfaction={metrics.user_satisfaction:.2f} "
            f"top_issues={','.join(report.top_issues) or '-'}"
        )

    if args.archive_dir:
        archive_dir = Path(args.archive_dir).expanduser().resolve()
        archive_dir.mkdir(parents=True, exist_ok=True)
        target = archive_path(archive_dir, args.period, datetime.now(timezone.utc))
        target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Archived: {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

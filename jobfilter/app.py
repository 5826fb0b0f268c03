import argparse
import asyncio
import json
import sys
from pathlib import Path

from . import __version__
from .config import Settings, load_settings
from .env import load_env
from .errors import FilterError
from .logger import get_logger, reset_logger
from .models import OutcomeStatus
from .orchestrator import PROFILE_SECTIONS, FilterRequest, run_filter
from .store import RecordStore


def _store(settings: Settings) -> RecordStore:
    return RecordStore(settings.require("database_url"))


def _read_json(path: str):
    input_path = Path(path)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise SystemExit(f"Invalid JSON in {input_path}: {e}")


def cmd_filter(args: argparse.Namespace, settings: Settings) -> None:
    overrides = {}
    if args.chunk_size is not None:
        if args.chunk_size < 1:
            raise SystemExit("--chunk-size must be at least 1")
        overrides["chunk_size"] = args.chunk_size
    if args.strict_persistence:
        overrides["strict_persistence"] = True
    settings = settings.model_copy(update=overrides)

    request = FilterRequest(policy_id=args.policy, source_id=args.source)
    scrape_dir = Path(args.scrape_dir) if args.scrape_dir else None
    response = asyncio.run(run_filter(settings, request, mock=args.mock, scrape_dir=scrape_dir))

    print(json.dumps(response.body, indent=2, ensure_ascii=False))
    if response.status != 200:
        print(f"[{response.status}] {response.reason}", file=sys.stderr)
        raise SystemExit(1)
    body = response.body
    print(
        f"Done. accepted={len(body['accepted'])} rejected={len(body['rejected'])} "
        f"errored={len(body['errored'])} unpersisted={len(body['unpersisted'])}",
        file=sys.stderr,
    )


def cmd_policy_add(args: argparse.Namespace, settings: Settings) -> None:
    if args.file:
        text = Path(args.file).read_text(encoding="utf-8")
    elif args.text:
        text = args.text
    else:
        raise SystemExit("Provide the policy with --text or --file")
    if not text.strip():
        raise SystemExit("Policy text is empty")
    policy = _store(settings).save_policy(text, name=args.name or "", policy_id=args.id)
    print(f"Policy: {policy.id}")
    print(f"Updated: {policy.updated_at.isoformat()}")


def cmd_policy_show(args: argparse.Namespace, settings: Settings) -> None:
    policy = _store(settings).get_policy(args.id)
    if policy is None:
        raise SystemExit(f"Policy not found: {args.id}")
    print(f"ID: {policy.id}")
    print(f"Name: {policy.name}")
    print(f"Updated: {policy.updated_at.isoformat()}")
    print()
    print(policy.text)


def cmd_profile_set(args: argparse.Namespace, settings: Settings) -> None:
    if args.section not in PROFILE_SECTIONS:
        raise SystemExit(f"Unknown section '{args.section}'. Use one of: {', '.join(PROFILE_SECTIONS)}")
    _store(settings).set_profile_section(args.section, _read_json(args.file))
    print(f"Saved profile section: {args.section}")


def cmd_profile_show(args: argparse.Namespace, settings: Settings) -> None:
    profile = _store(settings).get_profile()
    missing = [s for s in PROFILE_SECTIONS if s not in profile]
    print(json.dumps(profile, indent=2, ensure_ascii=False))
    if missing:
        print(f"Missing sections: {', '.join(missing)}", file=sys.stderr)


def cmd_urls_add(args: argparse.Namespace, settings: Settings) -> None:
    added = _store(settings).add_scrape_url(args.url)
    print(f"[{'added' if added else 'exists'}] {args.url}")


def cmd_urls_list(args: argparse.Namespace, settings: Settings) -> None:
    urls = _store(settings).list_scrape_urls()
    if not urls:
        print("No scrape URLs in store.")
        return
    for url in urls:
        print(f" - {url}")


def cmd_records_list(args: argparse.Namespace, settings: Settings) -> None:
    status = OutcomeStatus(args.status) if args.status else None
    records = _store(settings).list_records(policy_id=args.policy, status=status)
    if not records:
        print("No classification records.")
        return
    print(f"Found {len(records)} records:\n")
    for record in records:
        if record.error is not None:
            result = f"error: {record.error}"
        else:
            result = "accepted" if record.accepted else "rejected"
        print(f"ID: {record.posting_id}")
        print(f"  Title: {record.title}")
        print(f"  Company: {record.company}")
        print(f"  Policy: {record.policy_id}")
        print(f"  Evaluated: {record.evaluated_at.isoformat()}")
        print(f"  Result: {result}")
        print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobfilter", description="Filter scraped job postings against an applicant profile")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    flt = subparsers.add_parser("filter", help="Classify new or stale postings from a source and store the results")
    flt.add_argument("--policy", help="Policy id to classify against")
    flt.add_argument("--source", help="Scraper source id (Apify actor, or file name with --scrape-dir)")
    flt.add_argument("--scrape-dir", help="Read postings from <dir>/<source>.json instead of Apify")
    flt.add_argument("--mock", action="store_true", help="Use the offline mock classifier")
    flt.add_argument("--chunk-size", type=int, help="Postings per classifier call (default: JOBFILTER_CHUNK_SIZE or 5)")
    flt.add_argument("--strict-persistence", action="store_true", help="Report postings that failed to persist as errored")
    flt.set_defaults(func=cmd_filter)

    pol = subparsers.add_parser("policy", help="Manage classification policies")
    pol_sub = pol.add_subparsers(dest="policy_command", required=True)
    pol_add = pol_sub.add_parser("add", help="Create a policy, or replace its text when --id exists")
    pol_add.add_argument("--id", help="Policy id (default: generated)")
    pol_add.add_argument("--name", help="Human-readable name")
    pol_add.add_argument("--text", help="Policy text")
    pol_add.add_argument("--file", help="Read policy text from a file")
    pol_add.set_defaults(func=cmd_policy_add)
    pol_show = pol_sub.add_parser("show", help="Show a policy")
    pol_show.add_argument("--id", required=True, help="Policy id")
    pol_show.set_defaults(func=cmd_policy_show)

    prof = subparsers.add_parser("profile", help="Manage the applicant profile")
    prof_sub = prof.add_subparsers(dest="profile_command", required=True)
    prof_set = prof_sub.add_parser("set", help="Store one profile section from a JSON file")
    prof_set.add_argument("--section", required=True, choices=PROFILE_SECTIONS, help="Profile section")
    prof_set.add_argument("--file", required=True, help="JSON file with the section value")
    prof_set.set_defaults(func=cmd_profile_set)
    prof_show = prof_sub.add_parser("show", help="Print the stored profile")
    prof_show.set_defaults(func=cmd_profile_show)

    urls = subparsers.add_parser("urls", help="Manage scrape URLs")
    urls_sub = urls.add_subparsers(dest="urls_command", required=True)
    urls_add = urls_sub.add_parser("add", help="Add a scrape URL")
    urls_add.add_argument("--url", required=True, help="Search URL for the scraper")
    urls_add.set_defaults(func=cmd_urls_add)
    urls_list = urls_sub.add_parser("list", help="List scrape URLs")
    urls_list.set_defaults(func=cmd_urls_list)

    rec = subparsers.add_parser("records", help="Inspect classification records")
    rec_sub = rec.add_subparsers(dest="records_command", required=True)
    rec_list = rec_sub.add_parser("list", help="List stored classification records")
    rec_list.add_argument("--policy", help="Only records evaluated under this policy")
    rec_list.add_argument("--status", choices=[s.value for s in OutcomeStatus], help="Only this outcome")
    rec_list.set_defaults(func=cmd_records_list)

    return parser


def main(argv=None):
    # Load .env if present (OPENAI_API_KEY, APIFY_TOKEN, JOBFILTER_*)
    load_env()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        settings = load_settings()
    except FilterError as e:
        raise SystemExit(f"[{e.status}] {e.reason}: {e.message}")
    reset_logger()
    get_logger(level=settings.log_level, log_dir=settings.log_dir)

    try:
        args.func(args, settings)
    except FilterError as e:
        raise SystemExit(f"[{e.status}] {e.reason}: {e.message}")


if __name__ == "__main__":
    main()

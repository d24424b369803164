"""Command line interface for the estimating and bid pipeline."""

from __future__ import annotations

import argparse
import logging
import sqlite3
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import numpy as np

from gccore.errors import EstimatorError
from gccore.models import Project, ProjectStatus
from gccore.registry import MaterialRegistry
from gccore.store import Store
from gccore.takeoff import load_takeoff_source
from gccore.utils import new_id

from .bom import BOMGenerator
from .comparison import cheapest_item_vendor_differs, compare_project, level_project
from .config import REGENERATION_MODES, AppConfig, default_config, load_config, load_rules, load_vendors
from .io import Attachment
from .labor import estimate_project_labor
from .pricing import price_summary, suggest_price
from .quotes import QuotePayload, award_quote, ingest_quote
from .reporting import export_bom, export_comparison, export_ingest, export_labor, export_leveling
from .rfq import OutboxSender, create_rfq, prepare_rfq_email, send_rfq
from .vendors import coverage_frame, match_project_vendors, remaining_materials, suggest_vendor_cover

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")

Handler = Callable[[argparse.Namespace, AppConfig, Store], int]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Estimate projects from takeoffs and level vendor bids")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to YAML configuration")
    parser.add_argument("--database", type=Path, help="Override path to the SQLite database")
    parser.add_argument("--output-dir", type=Path, help="Directory for generated reports")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    parser.add_argument("--quiet", action="store_true", help="Suppress console summary output")

    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init-project", help="Register a project")
    init.add_argument("--name", required=True, help="Project name")
    init.add_argument("--takeoff-job", help="Takeoff job id the project estimates from")
    init.add_argument("--location", help="Project location")
    init.add_argument("--id", dest="project_id", help="Explicit project id")
    init.set_defaults(handler=_cmd_init_project)

    vendors = commands.add_parser("import-vendors", help="Load a vendor roster (YAML or CSV)")
    vendors.add_argument("file", type=Path)
    vendors.set_defaults(handler=_cmd_import_vendors)

    rules = commands.add_parser("import-rules", help="Load material rules, markups and email templates")
    rules.add_argument("file", type=Path)
    rules.set_defaults(handler=_cmd_import_rules)

    bom = commands.add_parser("generate-bom", help="Generate a BOM estimate from the takeoff")
    bom.add_argument("project")
    bom.add_argument("--takeoff", type=Path, help="Override path to the takeoff export")
    bom.add_argument("--regeneration", choices=REGENERATION_MODES, help="How earlier estimates are treated")
    bom.set_defaults(handler=_cmd_generate_bom)

    labor = commands.add_parser("labor", help="Estimate labor for the project's BOM")
    labor.add_argument("project")
    labor.set_defaults(handler=_cmd_labor)

    match = commands.add_parser("match-vendors", help="Score vendors against the project's BOM")
    match.add_argument("project")
    match.add_argument("--select", action="append", default=[], help="Vendor id already selected (repeatable)")
    match.add_argument("--suggest", action="store_true", help="Suggest a greedy vendor set")
    match.set_defaults(handler=_cmd_match_vendors)

    rfq = commands.add_parser("create-rfq", help="Create a draft RFQ for a vendor")
    rfq.add_argument("project")
    rfq.add_argument("vendor")
    rfq.add_argument("--item", action="append", default=[], help="BOM item id to include (repeatable)")
    rfq.add_argument("--due-in-days", type=int, help="Days until the RFQ is due")
    rfq.set_defaults(handler=_cmd_create_rfq)

    render = commands.add_parser("render-rfq", help="Render an RFQ email, optionally sending it to an outbox")
    render.add_argument("rfq")
    render.add_argument("--outbox", type=Path, help="Write the email to this directory and mark the RFQ sent")
    render.set_defaults(handler=_cmd_render_rfq)

    ingest = commands.add_parser("ingest-quote", help="Parse a vendor quote responding to an RFQ")
    ingest.add_argument("rfq")
    ingest.add_argument("--text", type=Path, help="File holding the email body")
    ingest.add_argument("--attachment", type=Path, action="append", default=[], help="Quote attachment (repeatable)")
    ingest.add_argument("--quote-number", help="Vendor quote number")
    ingest.set_defaults(handler=_cmd_ingest_quote)

    compare = commands.add_parser("compare", help="Compare quoted prices item by item")
    compare.add_argument("project")
    compare.set_defaults(handler=_cmd_compare)

    level = commands.add_parser("level", help="Level bids and rank vendors")
    level.add_argument("project")
    level.set_defaults(handler=_cmd_level)

    award = commands.add_parser("award", help="Award a quote and reject its rivals")
    award.add_argument("quote")
    award.set_defaults(handler=_cmd_award)

    materials = commands.add_parser("materials", help="Search the material registry")
    materials.add_argument("--search", help="Text to look for in name, description or SKU")
    materials.add_argument("--trade", help="Trade code filter (M, E, P, A, S, F)")
    materials.add_argument("--category", help="Category filter")
    materials.add_argument("--limit", type=int, default=50, help="Maximum number of results")
    materials.set_defaults(handler=_cmd_materials)

    price = commands.add_parser("price", help="Show vendor prices and a suggested price for a material")
    price.add_argument("material")
    price.set_defaults(handler=_cmd_price)
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        config = _load_config(args)
        _apply_overrides(config, args)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        return 1

    try:
        store = Store(config.database.path)
    except (OSError, sqlite3.Error) as exc:
        logger.error("Failed to open database %s: %s", config.database.path, exc)
        return 1

    handler: Handler = args.handler
    try:
        return handler(args, config, store)
    except EstimatorError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    except (OSError, ValueError, sqlite3.Error) as exc:
        logger.exception("%s failed: %s", args.command, exc)
        return 1


def _load_config(args: argparse.Namespace) -> AppConfig:
    if args.config.exists():
        return load_config(args.config)
    if args.config != DEFAULT_CONFIG_PATH:
        raise FileNotFoundError(f"Configuration file '{args.config}' does not exist")
    logger.debug("No configuration at %s; using built-in defaults", args.config)
    return default_config()


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> None:
    if args.database:
        config.database.path = _resolve_override_path(args.database)

    if args.output_dir:
        config.output.directory = _resolve_override_path(args.output_dir)

    if getattr(args, "takeoff", None):
        config.estimating.takeoff_path = _resolve_override_path(args.takeoff)

    if getattr(args, "regeneration", None):
        config.estimating.regeneration = args.regeneration


def _resolve_override_path(path: Path) -> Path:
    path = Path(path).expanduser()
    if path.is_absolute():
        return path
    return (Path.cwd() / path).resolve()


def _cmd_init_project(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    project = store.create_project(
        Project(
            id=args.project_id or new_id("prj"),
            name=args.name,
            takeoff_job_id=args.takeoff_job,
            location=args.location,
            status=ProjectStatus.SCOPE_DIAGNOSIS,
        )
    )
    if not args.quiet:
        print(f"Created project {project.id} ({project.name})")
    return 0


def _cmd_import_vendors(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    vendors = load_vendors(args.file)
    for vendor in vendors:
        store.upsert_vendor(vendor)
    logger.info("Imported %d vendor(s) from %s", len(vendors), args.file)
    if not args.quiet:
        print(f"Imported {len(vendors)} vendor(s).")
    return 0


def _cmd_import_rules(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    rule_file = load_rules(args.file)
    for rule in rule_file.material_rules:
        store.upsert_material_rule(rule)
    for markup in rule_file.trade_markups:
        store.set_trade_markup(markup)
    for template_type, template in rule_file.email_templates.items():
        store.upsert_email_template(template_type, template["body"], template.get("subject"))
    rules = store.load_rule_set()
    if not args.quiet:
        print(
            f"Imported {len(rule_file.material_rules)} material rule(s), "
            f"{len(rule_file.trade_markups)} markup(s), {len(rule_file.email_templates)} template(s); "
            f"rule version {rules.version}"
        )
    return 0


def _cmd_generate_bom(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    takeoff = None
    if config.estimating.takeoff_path is not None:
        takeoff = load_takeoff_source(config.estimating.takeoff_path)
    else:
        logger.warning("No takeoff export configured")

    generator = BOMGenerator(
        store,
        takeoff,
        rules=store.load_rule_set(),
        registry=MaterialRegistry(store),
        regeneration=config.estimating.regeneration,
        source_tag=config.estimating.source_tag,
    )
    result = generator.generate(args.project)
    export_bom(result, config.output)

    if not args.quiet:
        estimate = result.estimate
        print(f"Estimate {estimate.version} ({estimate.status.value}) for project {estimate.project_id}")
        frame = result.to_frame()
        if frame.empty:
            print("No BOM items generated.")
        else:
            summary = frame.loc[:, ["trade", "description", "final_quantity", "uom", "unit_cost", "total_cost"]].copy()
            for column in ("final_quantity", "unit_cost", "total_cost"):
                summary[column] = summary[column].apply(_format_float)
            print(summary.to_string(index=False))
        print(f"Material cost: {_format_float(result.total_material_cost)}")
        if result.failures:
            print(f"Failed features: {len(result.failures)}")
    return 0


def _cmd_labor(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    estimate = estimate_project_labor(
        store,
        args.project,
        rules=store.load_rule_set(),
        default_rate=config.estimating.default_labor_rate,
    )
    export_labor(estimate, config.output, args.project)

    if not args.quiet:
        trades = estimate.trade_frame()
        for column in ("hours", "cost", "cost_with_markup"):
            if column in trades.columns:
                trades[column] = trades[column].apply(_format_float)
        print("Labor by trade:")
        print(trades.to_string(index=False))
        print(
            f"Total hours: {_format_float(estimate.total_hours)} | "
            f"cost: {_format_float(estimate.total_cost)} | "
            f"with markup: {_format_float(estimate.total_with_markup)}"
        )
    return 0


def _cmd_match_vendors(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    match = match_project_vendors(store, args.project)
    items = [item for trade_items in match.materials_needed.values() for item in trade_items]

    if not args.quiet:
        frame = coverage_frame(match.coverage)
        if frame.empty:
            print("No active vendors on the roster.")
        else:
            frame["coverage_pct"] = frame["coverage_pct"].apply(_format_float)
            print("Vendor coverage:")
            print(frame.to_string(index=False))

    if args.select:
        remaining = remaining_materials(items, match.vendors, args.select)
        if not args.quiet:
            print(
                f"Selected vendors cover {remaining.covered_count}/{remaining.total_items} item(s) "
                f"({_format_float(remaining.coverage_pct)}%)"
            )
            if remaining.remaining_count:
                print(remaining.to_frame().to_string(index=False))

    if args.suggest:
        suggestion = suggest_vendor_cover(items, match.vendors)
        if not args.quiet:
            picked = ", ".join(suggestion.vendor_ids) or "-"
            print(f"Suggested vendors: {picked} ({suggestion.covered_count}/{suggestion.total_items} item(s))")
            if suggestion.uncoverable:
                print(f"No vendor covers trade(s): {', '.join(suggestion.uncoverable)}")
    return 0


def _cmd_create_rfq(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    item_ids: List[str] = list(args.item)
    if not item_ids:
        vendor = store.get_vendor(args.vendor)
        item_ids = [item.id for item in store.list_bom_items(args.project) if vendor.covers_trade(item.trade)]
        logger.info("Selected %d BOM item(s) in trades %s", len(item_ids), ", ".join(vendor.trades) or "-")

    due_in_days = args.due_in_days if args.due_in_days is not None else config.quotes.rfq_due_days
    rfq = create_rfq(store, args.project, args.vendor, item_ids, due_in_days=due_in_days)
    if not args.quiet:
        due = rfq.due_date.isoformat() if rfq.due_date else "TBD"
        print(f"Created {rfq.rfq_number} ({rfq.id}) with {len(rfq.items)} item(s), due {due}")
    return 0


def _cmd_render_rfq(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    if args.outbox:
        result = send_rfq(store, args.rfq, OutboxSender(_resolve_override_path(args.outbox)))
        rendered = result.rendered
        if not result.sent:
            logger.error("RFQ %s was not sent", args.rfq)
            return 1
    else:
        rendered = prepare_rfq_email(store, args.rfq)

    if not args.quiet:
        print(f"To: {rendered.recipient or '-'}")
        print(f"Subject: {rendered.subject}")
        print(rendered.body)
    return 0


def _cmd_ingest_quote(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    text = args.text.read_text(encoding="utf-8") if args.text else ""
    allowed = {extension.lower() for extension in config.quotes.attachment_extensions}
    attachments: List[Attachment] = []
    for path in args.attachment:
        if allowed and path.suffix.lower() not in allowed:
            logger.warning("Ignoring attachment %s with unsupported extension", path)
            continue
        attachments.append(Attachment(filename=path.name, content=path.read_bytes()))

    result = ingest_quote(
        store,
        args.rfq,
        QuotePayload(text=text, attachments=attachments, quote_number=args.quote_number),
        suggestion_top_k=config.quotes.suggestion_top_k,
        suggestion_provider=config.quotes.suggestion_provider,
    )
    export_ingest(result, config.output)

    if not args.quiet:
        quote = result.quote
        print(
            f"Quote {quote.quote_number} ({quote.id}): {result.matched_count} matched, "
            f"{len(result.unmatched)} unmatched, total {_format_float(quote.total_amount)}"
        )
        for entry in result.unmatched:
            hints = ", ".join(suggestion["description"] for suggestion in entry.suggestions) or "no suggestions"
            print(f"  unmatched: {entry.line.description.strip()} -> {hints}")
    return 0


def _cmd_compare(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    result = compare_project(store, args.project)
    export_comparison(result, config.output)

    if not args.quiet:
        groups = result.groups.copy()
        if groups.empty:
            print("No quotes to compare.")
            return 0
        for column in ("lowest_unit_price", "highest_unit_price"):
            if column in groups.columns:
                groups[column] = groups[column].apply(_format_float)
        print("Quoted prices by item:")
        print(groups.to_string(index=False))
    return 0


def _cmd_level(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    result = level_project(store, args.project)
    export_leveling(result, config.output)

    if not args.quiet:
        vendors = result.vendor_level.copy()
        if vendors.empty:
            print("No quotes to level.")
            return 0
        for column in ("quoted_total", "savings_vs_composite", "coverage_pct"):
            if column in vendors.columns:
                vendors[column] = vendors[column].apply(_format_float)
        print("Vendor ranking:")
        print(vendors.to_string(index=False))
        print(f"Potential savings: {_format_float(result.potential_savings)}")
        if cheapest_item_vendor_differs(result.item_level, result.vendor_level):
            print("Some items are cheaper from a vendor other than the lowest overall bidder.")
    return 0


def _cmd_award(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    result = award_quote(store, args.quote)
    if not args.quiet:
        print(f"Awarded quote {result.quote.quote_number}; rejected {result.rejected_count} rival quote(s)")
    return 0


def _cmd_materials(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    registry = MaterialRegistry(store)
    trade = args.trade.upper() if args.trade else None
    materials = registry.search(args.search, trade=trade, category=args.category, limit=args.limit)
    counts = store.stats()
    logger.info(
        "Catalog holds %s materials across %s projects and %s active vendors",
        counts["materials"],
        counts["projects"],
        counts["vendors"],
    )
    if not args.quiet:
        if not materials:
            print("No materials found.")
            return 0
        for material in materials:
            print(
                f"{material.id} | {material.trade} | {material.name} | "
                f"{material.uom or '-'} | used {material.times_used}x"
            )
    return 0


def _cmd_price(args: argparse.Namespace, config: AppConfig, store: Store) -> int:
    summary = price_summary(store, args.material)
    suggestion = suggest_price(store, args.material)
    if not args.quiet:
        if summary.has_pricing:
            prices = summary.prices.copy()
            for column in ("unit_cost", "pct_above_lowest"):
                prices[column] = prices[column].apply(_format_float)
            print(prices.to_string(index=False))
            print(f"Spread: {_format_float(summary.spread)} ({_format_float(summary.spread_pct)}%)")
        else:
            print("No vendor prices cached.")
        print(
            f"Suggested price: {_format_float(suggestion.suggested_price)} "
            f"({suggestion.confidence}, {suggestion.source}, {suggestion.data_points} data point(s))"
        )
    return 0


def _format_float(value: Optional[float]) -> str:
    try:
        if value is None or (isinstance(value, float) and np.isnan(value)):
            return "-"
        return f"{float(value):,.2f}"
    except (TypeError, ValueError):
        return str(value)


if __name__ == "__main__":  # pragma: no cover - manual execution entry point
    raise SystemExit(main())

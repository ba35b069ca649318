"""
Command line interface for the silo link engine.

CLI:
    silo-linker create-silo --name "Moon Magic" --hub 10 --members 11,12,13 --mode linear
    silo-linker preview --silo 1
    silo-linker generate --silo 1
    silo-linker generate --silo 1 --nodes 13
    silo-linker remove --node 11 --silo 1
    silo-linker remove --silo 1
    silo-linker stats --silo 1
    silo-linker anchors --silo 1
    silo-linker update-anchor --link ab12cd34ef56 --text "moon water rituals"
    silo-linker recommend --hub 10 --candidates 11,12,13,14 --limit 3
    silo-linker exclude --target 99
    silo-linker exclude --anchor "click here" --remove
    silo-linker purge --silo 1
    silo-linker test-suggester
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from silo_linker.config import LinkerConfig, load_config
from silo_linker.errors import SiloLinkerError
from silo_linker.link_engine import LinkGraphBuilder, build_engine
from silo_linker.store import EXCLUSION_ANCHOR, EXCLUSION_TARGET

logger = logging.getLogger("cli")


def _id_list(value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected comma-separated ids, got {value!r}")


def _build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="silo-linker",
        description="Internal link generation for content silos",
    )
    parser.add_argument("--config", default=None, help="Path to silo-linker.json")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    p_create = subparsers.add_parser("create-silo", help="Create a silo")
    p_create.add_argument("--name", required=True, help="Silo name")
    p_create.add_argument("--hub", type=int, default=None, help="Hub (pillar) node id")
    p_create.add_argument("--members", type=_id_list, default=[], help="Comma-separated support ids, in order")
    p_create.add_argument("--mode", default="linear", help="Linking mode (default: linear)")
    p_create.add_argument("--settings", default="{}", help="Settings as a JSON object")

    p_generate = subparsers.add_parser("generate", help="Generate links for a silo")
    p_generate.add_argument("--silo", type=int, required=True, help="Silo id")
    p_generate.add_argument("--nodes", type=_id_list, default=None, help="Only edges touching these node ids")

    p_preview = subparsers.add_parser("preview", help="Show planned links without writing")
    p_preview.add_argument("--silo", type=int, required=True, help="Silo id")
    p_preview.add_argument("--nodes", type=_id_list, default=None, help="Only edges touching these node ids")
    p_preview.add_argument("--json", action="store_true", help="Print raw JSON")

    p_remove = subparsers.add_parser("remove", help="Remove generated links")
    p_remove.add_argument("--node", type=int, default=None, help="Node id (omit to clear the whole silo)")
    p_remove.add_argument("--silo", type=int, default=None, help="Silo id")

    p_stats = subparsers.add_parser("stats", help="Link statistics for a silo")
    p_stats.add_argument("--silo", type=int, required=True, help="Silo id")

    p_anchors = subparsers.add_parser("anchors", help="Anchor text usage report")
    p_anchors.add_argument("--silo", type=int, default=None, help="Limit to one silo")

    p_update = subparsers.add_parser("update-anchor", help="Change the text of a generated link")
    p_update.add_argument("--link", required=True, help="Link id")
    p_update.add_argument("--text", required=True, help="New anchor text")

    p_recommend = subparsers.add_parser("recommend", help="Rank candidate supports for a hub")
    p_recommend.add_argument("--hub", type=int, required=True, help="Hub node id")
    p_recommend.add_argument("--candidates", type=_id_list, required=True, help="Comma-separated node ids")
    p_recommend.add_argument("--limit", type=int, default=10, help="Max results (default: 10)")

    p_exclude = subparsers.add_parser("exclude", help="Manage link exclusions")
    group = p_exclude.add_mutually_exclusive_group(required=True)
    group.add_argument("--target", type=int, help="Never link to this node id")
    group.add_argument("--anchor", help="Never use this anchor text")
    p_exclude.add_argument("--remove", action="store_true", help="Remove the exclusion instead")

    p_purge = subparsers.add_parser("purge", help="Delete removed link records")
    p_purge.add_argument("--silo", type=int, default=None, help="Limit to one silo")

    subparsers.add_parser("test-suggester", help="Check the anchor suggestion service")

    return parser


def _run_cli(args: argparse.Namespace, engine: LinkGraphBuilder, config: LinkerConfig) -> int:
    store = engine.store

    if args.command == "create-silo":
        settings = json.loads(args.settings or "{}")
        silo = store.create_silo(args.name, args.hub, args.members, args.mode, settings)
        print(f"Created silo {silo.silo_id}: {silo.name} ({silo.linking_mode.value}, "
              f"hub={silo.hub_id}, {len(silo.support_ids)} supports)")

    elif args.command == "generate":
        ctx = engine.run(args.silo, args.nodes)
        print(f"Created {len(ctx.created)} links in silo {args.silo}.")
        for link in ctx.created:
            print(f"  {link.source_id} -> {link.target_id}  \"{link.anchor_text}\"  [{link.link_id}]")
        if ctx.skipped:
            print(f"Skipped {len(ctx.skipped)} edges:")
            for skip in ctx.skipped:
                print(f"  {skip.source_id} -> {skip.target_id}  {skip.reason.value} {skip.detail}")

    elif args.command == "preview":
        plan = engine.preview(args.silo, args.nodes)
        if args.json:
            print(json.dumps(plan, indent=2))
            return 0
        for node_id, entries in plan.items():
            print(f"[{node_id}] {len(entries)} links")
            for entry in entries:
                print(f"    -> {entry['target_id']} {entry['target_title']}")
                print(f"       Anchor: \"{entry['anchor_text']}\" at offset {entry['insertion_offset']}")
                others = [v for v in entry["anchor_variations"] if v != entry["anchor_text"]]
                if others:
                    print(f"       Variations: {', '.join(others)}")

    elif args.command == "remove":
        if args.node is not None:
            ok = engine.remove_links(args.node, args.silo)
            print(f"Node {args.node}: {'links removed' if ok else 'nothing removed'}")
            return 0 if ok else 1
        if args.silo is None:
            print("Error: pass --node, --silo or both")
            return 1
        count = engine.remove_silo_links(args.silo)
        print(f"Removed links from {count} nodes in silo {args.silo}.")

    elif args.command == "stats":
        stats = engine.silo_stats(args.silo)
        print(f"Silo {stats['silo_id']}: {stats['name']} ({stats['linking_mode']})")
        print(f"  Members: {stats['member_count']}  Hub: {stats['hub_id']}")
        print(f"  Active links: {stats['active_links']}  Removed: {stats['removed_links']}  "
              f"Suggested: {stats['suggested_links']}")
        print(f"  Orphans: {', '.join(map(str, stats['orphans'])) or 'none'}")

    elif args.command == "anchors":
        report = store.anchor_report(
            args.silo,
            max_usage=config.max_anchor_usage,
            warning_threshold=config.anchor_warning_threshold,
        )
        if not report:
            print("No active anchors.")
        for entry in report:
            print(f"  {entry['count']:>3}  {entry['status']:<8}  {entry['anchor_text']}")

    elif args.command == "update-anchor":
        link = engine.update_anchor_text(args.link, args.text)
        print(f"Link {link.link_id}: anchor is now \"{link.anchor_text}\"")

    elif args.command == "recommend":
        ranked = engine.recommend_members(args.hub, args.candidates, args.limit)
        print(f"Recommended supports for {args.hub}: {', '.join(map(str, ranked)) or 'none'}")

    elif args.command == "exclude":
        kind = EXCLUSION_TARGET if args.target is not None else EXCLUSION_ANCHOR
        value = args.target if args.target is not None else args.anchor
        if args.remove:
            removed = store.remove_exclusion(kind, value)
            print(f"{'Removed' if removed else 'No'} {kind} exclusion {value!r}")
        else:
            store.add_exclusion(kind, value)
            print(f"Excluded {kind} {value!r}")

    elif args.command == "purge":
        count = store.purge_removed(args.silo)
        print(f"Purged {count} removed link records.")

    elif args.command == "test-suggester":
        if engine.suggester is None:
            print("Suggester disabled (no ANTHROPIC_API_KEY or use_suggester off).")
            return 1
        result = engine.suggester.test_connection()
        if result["success"]:
            print(f"Suggester OK ({result['model']}): {result['response']}")
        else:
            print(f"Suggester failed ({result['model']}): {result['error']}")
            return 1

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = _build_cli_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = load_config(Path(args.config) if args.config else None)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        engine = build_engine(config)
        code = _run_cli(args, engine, config)
    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(130)
    except (SiloLinkerError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()

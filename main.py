#!/usr/bin/env python3
"""
main.py - Main entry point for the arbiter bot.

This script provides CLI access to:
1. Run the bot against the in-memory world, in real time or on a
   virtual clock (--dry-run)
2. Inspect the behavior graph
3. Print the merged configuration

Usage:
    python main.py run --start farm --start eat      Real time, demo world
    python main.py run --dry-run --duration 600      Ten virtual minutes
    python main.py states                            List behaviors and transitions
    python main.py show-config --config bot.yaml     Print merged configuration
"""

import argparse
import asyncio
import logging
import sys

import yaml

from arbiter import Bot, BotConfig, ConfigError, VirtualScheduler
from arbiter.scheduler import AsyncioScheduler
from integration import SimulatedClient, build_demo_world
from utils import SessionLogger, load_config, set_seed, setup_logging

logger = logging.getLogger(__name__)


def build_config(args) -> BotConfig:
    """Merge the config file and command line overrides."""
    config_dict = load_config(args.config) if args.config else {}
    config = BotConfig.from_dict(config_dict or {})

    if getattr(args, 'max_runtime', None):
        config.max_runtime_minutes = args.max_runtime
    if args.seed is not None:
        config.seed = args.seed

    sections = {"farm": config.farm, "eat": config.eat}
    sections.update((f"deposit_{d.item}", d) for d in config.deposits)
    for name in args.start:
        if name not in sections:
            print(f"Warning: Unknown task '{name}'. Available: {', '.join(sections)}")
            continue
        sections[name].auto_start = True
    return config


def _make_bot(config: BotConfig, scheduler, session_dir=None) -> Bot:
    rng = set_seed(config.seed) if config.seed is not None else None
    client = SimulatedClient(scheduler)
    build_demo_world(client)
    session = SessionLogger(session_dir, clock=scheduler.now) if session_dir else None
    return Bot.from_client(client, config, scheduler=scheduler, rng=rng, session=session)


def _print_summary(bot: Bot, history: int) -> None:
    stats = bot.get_stats()
    if history:
        print("\nRecent transitions:")
        for entry in bot.get_history(history):
            flag = " (forced)" if entry['forced'] else ""
            print(f"  {entry['timestamp']:8.1f}s  {entry['previous']} -> {entry['state']}{flag}")

    print("\n" + "=" * 60)
    print("📊 Session Summary")
    print("=" * 60)
    print(f"Runtime: {stats['runtime_seconds'] / 60:.1f} minutes")
    print(f"Final state: {stats['state']}")
    print(f"Transitions: {stats['transitions']}")
    print(f"Harvested: {stats['harvested']}")
    for item, count in stats['deposited'].items():
        print(f"Deposited {item}: {count}")
    print(f"Eaten: {stats['eaten']}")
    print(f"Arrivals: {stats['arrivals']}")
    print(f"Engagements: {stats['engagements']}, retaliations: {stats['retaliations']}")
    print("=" * 60)


def run_bot(args) -> int:
    """Run the bot with the demo world."""
    print("=" * 60)
    print("🤖 Arbiter Bot - " + ("Dry Run (virtual clock)" if args.dry_run else "Run Mode"))
    print("=" * 60)

    config = build_config(args)
    started = [name for name, on in [("farm", config.farm.auto_start), ("eat", config.eat.auto_start)] if on]
    started += [f"deposit_{d.item}" for d in config.deposits if d.auto_start]

    print(f"\nConfiguration:")
    if args.dry_run:
        print(f"  Duration: {args.duration:.0f} virtual seconds")
    else:
        print(f"  Max runtime: {config.max_runtime_minutes or 'unlimited'} minutes")
    print(f"  Deposit items: {', '.join(d.item for d in config.deposits) or '(none)'}")
    print(f"  Auto-start: {', '.join(started) or '(none)'}")
    print(f"  Seed: {config.seed}")
    print()

    async def _dry_run() -> Bot:
        scheduler = VirtualScheduler()
        bot = _make_bot(config, scheduler, args.session_log)
        await bot.start()
        await scheduler.advance(args.duration)
        await bot.shutdown()
        return bot

    async def _live() -> Bot:
        bot = _make_bot(config, AsyncioScheduler(), args.session_log)
        await bot.run()
        return bot

    try:
        bot = asyncio.run(_dry_run() if args.dry_run else _live())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        return 0

    _print_summary(bot, args.history)
    return 0


def list_states(args) -> int:
    """List registered behaviors and transitions."""
    print("=" * 60)
    print("📚 Arbiter Bot - Behaviors")
    print("=" * 60)

    config = build_config(args)
    scheduler = VirtualScheduler()
    bot = Bot.from_client(SimulatedClient(scheduler), config, scheduler=scheduler)
    for behavior in sorted(bot.engine.behaviors(), key=lambda b: -b.priority):
        print(f"\n{behavior.name} ({behavior.kind.name.lower()}, priority {behavior.priority})")
        for transition in bot.engine.transitions.outgoing(behavior.name):
            print(f"   -> {transition.target} [{transition.name}, priority {transition.priority}]")
    return 0


def show_config(args) -> int:
    """Print the merged configuration as YAML."""
    config = build_config(args)
    print(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    return 0


def main():
    """Main entry point with subcommand support."""
    parser = argparse.ArgumentParser(
        description="Arbiter Bot - behavior arbitration for an autonomous game actor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run --start farm                  Farm with the demo world
  python main.py run --dry-run --duration 600      Ten virtual minutes
  python main.py states                            List behaviors and transitions
        """
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def add_common(sub):
        sub.add_argument('--config', type=str, default=None,
                         help='Path to configuration file (YAML or JSON)')
        sub.add_argument('--seed', type=int, default=None,
                         help='Random seed')
        sub.add_argument('--start', action='append', default=[], metavar='TASK',
                         help='Auto-start a task (farm, eat, deposit_<item>); repeatable')
        sub.add_argument('--log-level', type=str, default='INFO',
                         choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                         help='Logging level')
        sub.add_argument('--log-file', type=str, default=None,
                         help='Also write logs to this file')

    run_parser = subparsers.add_parser('run', help='Run the bot with the demo world')
    add_common(run_parser)
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Run on a virtual clock instead of real time')
    run_parser.add_argument('--duration', type=float, default=300.0,
                            help='Virtual seconds to simulate with --dry-run')
    run_parser.add_argument('--max-runtime', type=float, default=None,
                            help='Maximum runtime in minutes')
    run_parser.add_argument('--session-log', type=str, default=None,
                            help='Directory for the session activity log')
    run_parser.add_argument('--history', type=int, default=20,
                            help='Number of transitions to print at the end')

    states_parser = subparsers.add_parser('states', help='List behaviors and transitions')
    add_common(states_parser)

    config_parser = subparsers.add_parser('show-config', help='Print the merged configuration')
    add_common(config_parser)

    args = parser.parse_args()

    commands = {
        'run': run_bot,
        'states': list_states,
        'show-config': show_config,
    }
    if args.command not in commands:
        parser.print_help()
        print("\n💡 Quick start:")
        print("  python main.py run --dry-run --start farm --start eat")
        return 1

    setup_logging(args.log_level, args.log_file)
    try:
        return commands[args.command](args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())

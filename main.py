import argparse
import logging

from clinicsched.config import load_settings
from clinicsched.demo import run_demo
from clinicsched.menu import AppointmentMenu, format_report
from clinicsched.state_file import load_state, save_state


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="clinicsched: priority appointment scheduling")
    parser.add_argument("--demo", action="store_true", help="Run the demo batch once and exit")
    parser.add_argument(
        "--demo-count",
        type=int,
        default=None,
        help="With --demo, submit this many random requests instead of the fixed four",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for --demo-count")
    parser.add_argument("--state", default=None, help="State file path (overrides STATE_FILE)")
    parser.add_argument("--no-state", action="store_true", help="Do not load or save the state file")
    args = parser.parse_args()

    settings = load_settings()
    _setup_logging(settings.log_level)
    log = logging.getLogger(__name__)

    if args.demo:
        if args.demo_count is not None and args.demo_count < 0:
            parser.error("--demo-count must be >= 0")
        state, report = run_demo(count=args.demo_count, seed=args.seed)
        print(f"Demo calendar for {state.calendar.doctor_name}: {len(state.calendar)} slots")
        for line in format_report(report, state):
            print(line)
        return 0

    state_path = args.state or settings.state_file
    state = None if args.no_state else load_state(state_path)

    menu = AppointmentMenu(settings, state=state)
    try:
        return menu.run()
    finally:
        if not args.no_state and menu.state is not None:
            try:
                save_state(state_path, menu.state, attempts=settings.state_save_retry_attempts)
            except OSError:
                log.warning("Failed to save state to %s", state_path, exc_info=True)


if __name__ == "__main__":
    raise SystemExit(main())

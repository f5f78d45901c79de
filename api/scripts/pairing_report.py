import argparse
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from prayer_partners.database import SessionLocal
from prayer_partners.engine import PairingEngine
from prayer_partners.services.errors import PairingError
from prayer_partners.services.notifications import InlineNotificationQueue


def main() -> None:
    parser = argparse.ArgumentParser(description="Prayer partner pairing report and maintenance")
    parser.add_argument("--reshuffle", action="store_true", help="run a reshuffle before reporting")
    parser.add_argument("--fix-integrity", action="store_true")
    parser.add_argument("--expire-requests", action="store_true", help="expire pending partner requests past their deadline")
    parser.add_argument("--history", type=int, default=0, help="include the N most recent partnership records")
    args = parser.parse_args()

    engine = PairingEngine(SessionLocal, notifications=InlineNotificationQueue())
    report = {}
    try:
        if args.reshuffle:
            report["reshuffle"] = engine.trigger_reshuffle(trigger="script").to_dict()
        if args.fix_integrity:
            report["integrity_fix"] = engine.fix_integrity()
        if args.expire_requests:
            report["requests_expired"] = engine.expire_partnership_requests()
            report["request_stats"] = engine.partnership_request_stats()
        report["summary"] = engine.summary()
        report["integrity"] = engine.verify_integrity()
        if args.history > 0:
            report["history"] = engine.get_pairing_history(args.history)
    except PairingError as exc:
        print(json.dumps({"error": exc.message, "hint": exc.hint}, indent=2))
        sys.exit(1)

    print(json.dumps(report, indent=2, default=str))


if __name__ == "__main__":
    main()

import sys
import logging
import argparse
from app import create_app

log = logging.getLogger('werkzeug')
log.disabled = True
cli = sys.modules['flask.cli']
cli.show_server_banner = lambda *x: None

app = create_app()

def main() -> None:
    p = argparse.ArgumentParser(prog="markshelf")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8073)
    p.add_argument("--no-scheduler", action="store_true")
    args = p.parse_args()

    if args.no_scheduler:
        app.config["SCHEDULER_ENABLED"] = False
        from app.jobs.scheduler import scheduler
        if scheduler.running:
            scheduler.shutdown(wait=False)
    print(f"Markshelf starting on http://{args.host}:{args.port}", flush=True)
    app.run(host=args.host, port=args.port, debug=False)

if __name__ == "__main__":
    main()

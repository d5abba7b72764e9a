"""
CLI entry point for the Coodeen web server.

Run:  python -m web [--port 3001] [--dir /path/to/project]
"""

import argparse
import logging
import os

from config import app_config


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Coodeen - local AI coding assistant server")
    parser.add_argument("--port", type=int, default=app_config.port,
                        help=f"Server port (default: {app_config.port})")
    parser.add_argument("--host", default=app_config.host,
                        help=f"Server host (default: {app_config.host})")
    parser.add_argument("--dir", default=".", help="Project directory offered to new sessions")
    parser.add_argument("--log-level", default=app_config.log_level,
                        help=f"Log level (default: {app_config.log_level})")
    args = parser.parse_args()

    project_dir = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(project_dir):
        print(f"\n  Error: directory not found: {project_dir}")
        print(f"  Hint: use the full path, e.g. --dir ~/Desktop/my-project\n")
        raise SystemExit(1)
    # Read back by GET /api/config/cwd
    os.environ["COODEEN_CWD"] = project_dir

    print(f"\n  {app_config.title} - server")
    print(f"  http://{args.host}:{args.port}")
    print(f"  Project directory: {project_dir}")
    print(f"  Data directory: {os.path.expanduser(app_config.data_dir)}\n")

    # App loggers; uvicorn's log_level only affects its own loggers
    root_log = logging.getLogger()
    root_log.setLevel(getattr(logging, args.log_level.upper(), logging.INFO))
    if not root_log.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root_log.addHandler(h)

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")

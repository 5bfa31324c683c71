"""
Cemetery Backend — Uvicorn Launcher

Usage:
    python run.py
    python run.py --port 8000 --reload
    python run.py --no-scheduler      # API only, background jobs run elsewhere
"""
import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Cemetery Purchases & Payments API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 8000)))
    parser.add_argument("--reload", action="store_true", help="Hot reload for development")
    parser.add_argument("--no-scheduler", action="store_true", help="Do not start cleanup/reconciliation jobs")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    os.environ["LOG_LEVEL"] = args.log_level.upper()
    if args.no_scheduler:
        os.environ["SCHEDULER_ENABLED"] = "false"

    scheduler = "off" if args.no_scheduler else "on"
    print(f"""
    ========================================================
      Cemetery Purchases & Payments API
      Listening: http://{args.host}:{args.port}   (docs at /docs)
      Paynow result URL: /api/payments/paynow/webhook
      Background jobs: {scheduler}
    ========================================================
    """)

    # Dashboard versions and rate limits live in process memory
    uvicorn.run(
        "cemetery.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Launch script for RideLab Telemetry Backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST]

Examples:
    python run_server.py                    # Use default ./data/captures folder
    python run_server.py /path/to/captures  # Use custom folder
    python run_server.py --port 5000        # Run on port 5000
"""

import argparse
import os
import sys
from pathlib import Path

# Add ridelab to path
sys.path.insert(0, str(Path(__file__).parent))

from ridelab.config import DATA_FOLDER_ENV, DEFAULT_DATA_FOLDER


def main():
    parser = argparse.ArgumentParser(description="RideLab Telemetry Backend Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default=str(DEFAULT_DATA_FOLDER),
        help=f"Path to folder containing capture CSV files (default: {DEFAULT_DATA_FOLDER})"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)

    print("RideLab Telemetry Backend")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Server: http://{args.host}:{args.port}")
    print("=" * 40)

    if not data_folder.exists():
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("You can set it later via POST /folder")

    # Configure data folder for FastAPI lifespan
    if data_folder.exists():
        os.environ[DATA_FOLDER_ENV] = str(data_folder)

    print("\nAPI Endpoints:")
    print("  GET  /                     - Health check")
    print("  GET  /health               - Detailed health")
    print("  GET  /folder               - Current folder info")
    print("  POST /folder               - Set data folder")
    print("  GET  /runs                 - List all runs")
    print("  GET  /runs/{id}            - Get run summary")
    print("  GET  /runs/{id}/series     - Get canonical series")
    print("  GET  /runs/{id}/events     - Get detected events")
    print("  GET  /runs/{id}/polyline   - Get simplified GPS route")
    print("  GET  /runs/{id}/sections   - Compare with fastest run on track")
    print("  POST /compare              - Compare runs on a track")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "ridelab.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Service runner"""
import sys
import time
import signal
from snapkeeper import create_service

if __name__ == '__main__':
    create_service()

    # Turn SIGTERM into a normal exit so the shutdown backup runs
    signal.signal(signal.SIGTERM, lambda signum, frame: sys.exit(0))

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass

#!/usr/bin/env python3
"""A job that crashes right after starting."""

import os
import sys

def main():
    print(f"Job {os.environ.get('WEBJOBS_NAME')} ({os.environ.get('WEBJOBS_TYPE')}) starting...")
    print("ERROR: Simulated crash!")
    sys.exit(3)

if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Run a backup pass from a source checkout"""
import sys
from zborg.cli import main

if __name__ == '__main__':
    # Same as the installed `zborg` command
    sys.exit(main())

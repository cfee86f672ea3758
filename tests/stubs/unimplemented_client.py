#!/usr/bin/env python3
"""Client that supports no scenario at all"""
import sys

if __name__ == '__main__':
    print(f"unsupported scenario: {sys.argv[1]}")
    sys.exit(127)

#!/usr/bin/env python3
"""
Wrapper script for the batch media encoder.
"""

import subprocess
import sys

# Run module from src directory
result = subprocess.run([sys.executable, "src/encode_media_files.py"] + sys.argv[1:])

sys.exit(result.returncode)

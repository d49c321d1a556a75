"""Child processes used by the tests, as (file, args) pairs for spawn()."""

TEST_STRING = "foo"
SECOND_TEST_STRING = "bar"
NONEXISTENT = "spawn-pilot-does-not-exist"


def python(code, *args):
    return ("python", ["-c", code, *args])


PRINT_STDOUT = python("print('foo')")
PRINT_STDERR = python("import sys; print('foo', file=sys.stderr)")
PRINT_BOTH = python(
    "import sys, time; print('foo', flush=True); time.sleep(0.1); print('bar', file=sys.stderr)"
)
PRINT_FAIL = python("import sys; print('foo'); sys.exit(2)")
EXIT_2 = python("import sys; sys.exit(2)")
HANGING = python("import time; time.sleep(1000)")
PASS_THROUGH = python("import shutil, sys; shutil.copyfileobj(sys.stdin, sys.stdout)")
TO_UPPER = python("import sys; sys.stdout.write(sys.stdin.read().upper())")
TO_UPPER_STDERR = python("import sys; sys.stderr.write(sys.stdin.read().upper())")
TO_UPPER_FAIL = python("import sys; sys.stdout.write(sys.stdin.read().upper()); sys.exit(2)")
DOUBLE = python("import sys; text = sys.stdin.read().rstrip('\\n'); print(text + text)")
DOUBLE_FAIL = python(
    "import sys; text = sys.stdin.read().rstrip('\\n'); print(text + text); sys.exit(2)"
)
PRINT_SLEEP = python("import time; time.sleep(0.5); print('foo')")
PRINT_SLEEP_FAIL = python("import sys, time; time.sleep(0.5); print('foo'); sys.exit(2)")
ENDLESS = python(
    "import os, sys\n"
    "try:\n"
    "    while True:\n"
    "        sys.stdout.write('foo\\n')\n"
    "        sys.stdout.flush()\n"
    "except BrokenPipeError:\n"
    "    os._exit(0)\n"
)
HEAD_2 = python(
    "import sys\n"
    "for _ in range(2):\n"
    "    sys.stdout.write(sys.stdin.readline())\n"
)


def print_no_newline(text):
    """Write text to stdout byte for byte."""
    return python("import sys; sys.stdout.buffer.write(sys.argv[1].encode())", text)

"""Keep tiny numeric thresholds in ``constants.py``.

Any literal of magnitude 1e-6 or below written in scientific notation in a
library module is a tolerance and must come from ``fitmesh.core.constants``.
"""
import pathlib
import re

# 1e-6, 2.5e-07, 1E-12, ... (exponent of 6 or more)
TINY_LITERAL = re.compile(r"(?<![\w.])\d+(?:\.\d*)?[eE]-0*(?:[6-9]|[1-9]\d)\b")
ALLOW_FILES = {'constants.py'}


def _library_files():
    root = pathlib.Path(__file__).resolve().parent.parent
    return root, sorted(p for p in root.rglob('*.py') if 'tests' not in p.parts)


def test_pattern_catches_tolerances():
    assert TINY_LITERAL.search('x < 1e-12')
    assert TINY_LITERAL.search('tol=2.5E-07')
    assert not TINY_LITERAL.search('rtol = 1e-3')
    assert not TINY_LITERAL.search('EPS_TINY')


def test_no_raw_tolerance_literals():
    root, files = _library_files()
    assert files
    offenders = []
    for f in files:
        if f.name in ALLOW_FILES:
            continue
        for lineno, line in enumerate(f.read_text(encoding='utf-8').splitlines(), 1):
            code = line.split('#', 1)[0]
            for m in TINY_LITERAL.finditer(code):
                offenders.append(f"{f.relative_to(root)}:{lineno}: {m.group(0)}")
    assert not offenders, "Raw tolerance literals found (use constants.EPS_* / DEFAULT_*):\n" + '\n'.join(offenders)

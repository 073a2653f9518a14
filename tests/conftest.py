import sys
import textwrap
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compile_runner.api import create_app  # noqa: E402
from compile_runner.settings import Settings  # noqa: E402

# Stand-ins for puya-ts: `<stub> <src> --out-dir <out>`
COMPILER_OK = """
import os, sys
src = sys.argv[1]
out = sys.argv[sys.argv.index("--out-dir") + 1]
name = os.path.basename(src).split(".")[0]
with open(src, encoding="utf-8") as f:
    source = f.read()
os.makedirs(out, exist_ok=True)
for ext in ("arc32.json", "arc56.json"):
    with open(os.path.join(out, name + "." + ext), "w", encoding="utf-8") as f:
        f.write(source)
with open(os.path.join(out, name + ".approval.teal"), "w") as f:
    f.write("#pragma version 10")
print("compiled", src)
"""

COMPILER_FAILS = """
import sys
print("checking contract")
sys.stderr.write("error: Unexpected token in contract\\n")
sys.exit(1)
"""

COMPILER_HANGS = """
import sys, time
sys.stderr.write("starting compile\\n")
sys.stderr.flush()
time.sleep(30)
"""

COMPILER_NO_ARTIFACTS = """
import os, sys
out = sys.argv[sys.argv.index("--out-dir") + 1]
with open(os.path.join(out, "contract.approval.teal"), "w") as f:
    f.write("#pragma version 10")
"""

COMPILER_STDOUT_DIAGNOSTICS = """
import sys
print("A.ts(3,21): error TS2304: Cannot find name 'Contract'.")
sys.exit(2)
"""

COMPILER_WARNS_NO_ARTIFACTS = """
import os, sys
src = sys.argv[1]
print("warning: no contract class found in", os.path.basename(src))
"""

COMPILER_SUPPRESSED_ERROR = COMPILER_OK + """
sys.stderr.write("SuppressedError: An error was suppressed during disposal\\n")
sys.exit(1)
"""

COMPILER_REPORTS_SEED = """
import json, os, sys
out = sys.argv[sys.argv.index("--out-dir") + 1]
seeded = {
    "package.json": os.path.isfile("package.json"),
    "dependency": os.path.isfile(os.path.join("node_modules", "dep", "index.js")),
}
with open(os.path.join(out, "seed.arc32.json"), "w") as f:
    json.dump(seeded, f)
"""

# Stand-ins for `algokit generate client <arc32> --output <client>`
GENERATOR_OK = """
import sys
args = sys.argv[1:]
arc32 = args[2]
output = args[args.index("--output") + 1]
with open(arc32, encoding="utf-8") as f:
    spec = f.read()
with open(output, "w", encoding="utf-8") as f:
    f.write("// generated client\\n// " + spec.replace("\\n", " ") + "\\n")
"""

GENERATOR_NO_OUTPUT = """
print("nothing to do")
"""


@pytest.fixture
def sandbox_root(tmp_path):
    """Temporary root under which job sandboxes are created."""
    return tmp_path / "sandboxes"


@pytest.fixture
def make_stub(tmp_path):
    """Write a stub tool script and return the command that runs it."""
    scripts = tmp_path / "stubs"
    scripts.mkdir()

    def _make(source: str, name: str = "tool.py") -> tuple[str, ...]:
        path = scripts / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return (sys.executable, str(path))

    return _make


@pytest.fixture
def make_settings(tmp_path, sandbox_root, make_stub):
    def _make(compiler: str = COMPILER_OK, generator: str = GENERATOR_OK, **overrides) -> Settings:
        values = dict(
            compiler_command=make_stub(compiler, "compiler.py"),
            client_generator_command=make_stub(generator, "generator.py"),
            sandbox_root=sandbox_root,
            template_dir=tmp_path / "template",
            timeout_ms=10_000,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_client(make_settings):
    def _make(**kwargs) -> TestClient:
        return TestClient(create_app(make_settings(**kwargs)))

    return _make


def leftover_sandboxes(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return list(root.iterdir())

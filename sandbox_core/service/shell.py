"""
Best-effort detection of shell commands submitted as code, and rewriting them
into a snippet the sandbox interpreter can run.
"""

import json
import re
from typing import Optional

DEFAULT_TEMPLATE = "code-interpreter-v1"

_DOLLAR_PREFIX = re.compile(r"^\s*\$\s")
_COMMAND_VERB = re.compile(
    r"^\s*\$?\s*(ls|cd|mkdir|rm|cp|mv|cat|grep|find|echo|curl|wget|git)\s"
)
_RUN_THE_COMMAND = re.compile(r"run\s+(the\s+)?command\s+[`'\"](.+?)[`'\"]", re.I)

_PYTHON_WRAPPER = """
import subprocess
import sys

try:
    result = subprocess.run({command}, shell=True, capture_output=True, text=True)
    if result.stdout:
        print(result.stdout)
    if result.stderr:
        print("Error output:", file=sys.stderr)
        print(result.stderr, file=sys.stderr)
    print(f"Command completed with exit code: {{result.returncode}}")
except Exception as e:
    print(f"Failed to execute command: {{e}}", file=sys.stderr)
"""

_NODE_WRAPPER = """
const {{ execSync }} = require('child_process');

try {{
  const command = {command};
  console.log(`Executing command: ${{command}}`);
  const output = execSync(command, {{ encoding: 'utf8', shell: true, stdio: 'pipe' }});
  console.log(output);
  console.log('Command completed successfully');
}} catch (error) {{
  console.error('Error output:');
  if (error.stderr) console.error(error.stderr);
  console.error(`Command failed with exit code: ${{error.status || 'unknown'}}`);
  console.error(error.message);
}}
"""


def is_shell_command(code: str) -> bool:
    return bool(
        _DOLLAR_PREFIX.search(code)
        or _COMMAND_VERB.search(code)
        or _RUN_THE_COMMAND.search(code)
    )


def extract_command(code: str) -> str:
    """Strip a leading `$ ` or pull the quoted command out of "run the command `...`"."""
    if not _DOLLAR_PREFIX.search(code) and not _COMMAND_VERB.search(code):
        m = _RUN_THE_COMMAND.search(code)
        if m:
            return m.group(2).strip()
    return _DOLLAR_PREFIX.sub("", code, count=1).strip()


def wrap_shell_command(command: str, template: Optional[str] = None) -> str:
    template = template or DEFAULT_TEMPLATE
    if "python" in template or template == DEFAULT_TEMPLATE:
        return _PYTHON_WRAPPER.format(command=repr(command))
    if "node" in template or template == "nodejs-v1":
        return _NODE_WRAPPER.format(command=json.dumps(command))
    # other templates get the bare command and may not be able to run it
    return command


def prepare_code(code: str, template: Optional[str] = None) -> tuple[str, bool]:
    """Return the code to submit and whether it was rewritten from a shell command."""
    if not is_shell_command(code):
        return code, False
    return wrap_shell_command(extract_command(code), template), True

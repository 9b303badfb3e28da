"""Deterministic collaborator used by ``--dry-run``."""

from __future__ import annotations

import json
import re
from typing import Optional

from skillsmith.config.settings import Stage

_FIELD = re.compile(r"(?m)^(Package|Version|Ecosystem|Pattern|Runtime):[ \t]*(.*)$")


def _fields(text: str) -> dict:
    found: dict = {}
    for key, value in _FIELD.findall(text or ""):
        found.setdefault(key.lower(), value.strip())
    return found


def _python_skill(name: str, version: str) -> str:
    module = name.replace("-", "_")
    return f"""---
name: {name}
description: python library
version: {version}
ecosystem: python
---

## Imports

```python
import {module}
```

## Core Patterns

### Basic import ✅ Current

Importing the package succeeds and exposes a module object.

```python
import {module}

print({module}.__name__)
```

### Version lookup ✅ Current

The installed distribution reports its version through importlib.metadata.

```python
from importlib.metadata import version

print(version("{name}"))
```

## Pitfalls

### Wrong: importing the distribution name

```python
import {name}-missing
```

### Right: import the module name

```python
import {module}
```
"""


def _javascript_skill(name: str, version: str) -> str:
    return f"""---
name: {name}
description: javascript library
version: {version}
ecosystem: javascript
---

## Imports

```javascript
const lib = require('{name}');
```

## Core Patterns

### Basic require ✅ Current

Requiring the package returns its exports.

```javascript
const lib = require('{name}');

console.log(typeof lib);
```
"""


class StubGenerationClient:
    """Returns canned, input-derived text for each stage. Never touches the network."""

    def __init__(self, stage: Stage):
        self.stage = stage
        self.calls = 0

    async def complete(self, instructions: str, input_text: str, feedback: Optional[str] = None) -> str:
        self.calls += 1
        fields = _fields(input_text)
        name = fields.get("package") or "example"
        version = fields.get("version") or "0.0.0"
        stage = self.stage

        if stage is Stage.API_EXTRACTOR:
            return json.dumps({"library_category": "general", "apis": [{"name": name, "type": "module"}]})
        if stage is Stage.PATTERN_EXTRACTOR:
            return json.dumps({"patterns": [{"name": "Basic import", "imports": [f"import {name}"]}]})
        if stage is Stage.CONTEXT_EXTRACTOR:
            return json.dumps({"conventions": [], "pitfalls": [], "documented_apis": [name]})
        if stage is Stage.SYNTHESIZER:
            if fields.get("ecosystem") == "javascript":
                return _javascript_skill(name, version)
            return _python_skill(name, version)
        if stage is Stage.REVIEWER:
            if "importlib.metadata.version" in instructions:
                return (
                    "```python\nimport json\nfrom importlib.metadata import version\n\n"
                    f"print(json.dumps({{'version_installed': version('{name}')}}))\n```"
                )
            return json.dumps({"passed": True, "issues": []})
        if stage is Stage.PROBE_GENERATOR:
            pattern = fields.get("pattern") or "pattern"
            if fields.get("runtime") == "javascript":
                return f"```javascript\nconsole.log('✓ Test passed: {pattern}');\n```"
            return f"```python\nprint('✓ Test passed: {pattern}')\n```"
        raise ValueError(f"Unknown stage: {stage}")


__all__ = ["StubGenerationClient"]

"""
Readonly execution wrapper.

Scripts run in readonly mode get their ``new GlideRecord(...)`` and
``new GlideRecordSecure(...)`` constructions (``global.`` prefixed or not)
routed through a factory that is defined for this execution only. Records
built by the factory have their write methods replaced on the instance with
handlers that log the attempt and do nothing.

Records the script does not construct itself (``getRefRecord()``, records
handed back by Script Includes, aliased constructors) are covered by a guard
installed on the record classes when the script starts and restored in the
``finally`` block that ends it, so the interposition lasts exactly one
execution.

Every suppressed write is logged as ``[READONLY] <op> <table> ...`` and a
final ``[READONLY] manifest [...]`` line lists them all as JSON, which
``split_readonly_output`` turns back into a list.
"""
import json
import re
import uuid
from typing import List, Optional, Tuple

READONLY_MARKER = "[READONLY]"
MANIFEST_PREFIX = f"{READONLY_MARKER} manifest "

# method -> (logged operation, value returned instead of writing)
SUPPRESSED_METHODS = {
    "insert": ("INSERT", "null"),
    "update": ("UPDATE", "null"),
    "deleteRecord": ("DELETE", "false"),
    "deleteMultiple": ("DELETE_MULTIPLE", "undefined"),
    "updateMultiple": ("UPDATE_MULTIPLE", "undefined"),
}
GUARDED_CLASSES = ("GlideRecord", "GlideRecordSecure")

_CONSTRUCTION = re.compile(r"\bnew\s+(?:global\s*\.\s*)?(GlideRecord|GlideRecordSecure)\s*\(")

_PRELUDE = """\
var {log} = [];
var {methods} = {{
{method_table}
}};
function {suppressor}(op, ret, target) {{
  return function() {{
    var gr = target || this;
    var id = '';
    try {{ id = String(gr.getUniqueValue() || ''); }} catch (e) {{}}
    var entry = op + ' ' + gr.getTableName() + (id ? ' (sys_id: ' + id + ')' : '');
    {log}.push(entry);
    gs.info('{marker} ' + entry + ' suppressed');
    return ret;
  }};
}}
function {wrap}(gr) {{
  for (var m in {methods}) {{
    gr[m] = {suppressor}({methods}[m][0], {methods}[m][1], gr);
  }}
  return gr;
}}
var {saved} = [];
function {guard}(cls) {{
  if (!cls || !cls.prototype) return;
  var originals = {{}};
  for (var m in {methods}) {{
    originals[m] = cls.prototype[m];
    cls.prototype[m] = {suppressor}({methods}[m][0], {methods}[m][1], null);
  }}
  {saved}.push([cls.prototype, originals]);
}}
function {restore}() {{
  while ({saved}.length) {{
    var entry = {saved}.pop();
    for (var m in entry[1]) {{
      entry[0][m] = entry[1][m];
    }}
  }}
}}
function {factory}_GlideRecord(table) {{ return {wrap}(new GlideRecord(table)); }}
function {factory}_GlideRecordSecure(table) {{ return {wrap}(new GlideRecordSecure(table)); }}
"""

_EPILOGUE = """\
}} finally {{
  {restore}();
  gs.info('{manifest}' + JSON.stringify({log}));
}}
"""


def wrap_readonly(script: str, scope_id: Optional[str] = None) -> str:
    """Return ``script`` with every record write routed to a logging no-op for this execution."""
    scope_id = scope_id or uuid.uuid4().hex[:12]
    names = {
        "log": f"__ro_log_{scope_id}",
        "methods": f"__ro_methods_{scope_id}",
        "suppressor": f"__ro_suppress_{scope_id}",
        "wrap": f"__ro_wrap_{scope_id}",
        "saved": f"__ro_saved_{scope_id}",
        "guard": f"__ro_guard_{scope_id}",
        "restore": f"__ro_restore_{scope_id}",
        "factory": f"__ro_{scope_id}",
    }

    method_table = ",\n".join(
        f"  {method}: ['{op}', {ret}]" for method, (op, ret) in SUPPRESSED_METHODS.items()
    )
    prelude = _PRELUDE.format(marker=READONLY_MARKER, method_table=method_table, **names)
    guards = "\n".join(
        f"{names['guard']}(typeof {cls} === 'undefined' ? null : {cls});" for cls in GUARDED_CLASSES
    )
    body = _CONSTRUCTION.sub(lambda m: f"{names['factory']}_{m.group(1)}(", script)
    epilogue = _EPILOGUE.format(restore=names["restore"], manifest=MANIFEST_PREFIX, log=names["log"])
    return f"{prelude}try {{\n{guards}\n{body}\n{epilogue}"


def split_readonly_output(lines: List[str]) -> Tuple[List[str], List[str]]:
    """
    Separate the manifest from captured output.

    Returns:
        (output lines without the manifest, suppressed mutation entries)
    """
    remaining: List[str] = []
    suppressed: List[str] = []
    for line in lines:
        if line.startswith(MANIFEST_PREFIX):
            try:
                entries = json.loads(line[len(MANIFEST_PREFIX):])
            except ValueError:
                entries = []
            suppressed.extend(str(entry) for entry in entries if entry)
            continue
        remaining.append(line)
    if not suppressed:
        # Manifest missing (script aborted early); fall back to the per-write lines
        suppressed = [
            line[len(READONLY_MARKER):].strip().rsplit(" suppressed", 1)[0]
            for line in remaining
            if line.startswith(READONLY_MARKER)
        ]
    return remaining, suppressed

"""
Compare the environment variables the code reads with the ones documented
in .env.example.

Usage:
  python scripts/verify_env_vars.py
"""
import re
from pathlib import Path


def find_env_vars():
    """Find all environment variables referenced in code."""
    env_vars = set()
    for py_file in Path("smartmess").rglob("*.py"):
        content = py_file.read_text(encoding="utf-8", errors="ignore")
        env_vars.update(re.findall(r'os\.getenv\(["\']([A-Z0-9_]+)["\']', content))
        env_vars.update(re.findall(r'os\.environ\[\s*["\']([A-Z0-9_]+)["\']\s*\]', content))
        env_vars.update(re.findall(r'alias=["\']([A-Z0-9_]+)["\']', content))
    return sorted(env_vars)


def documented_env_vars(path: Path = Path(".env.example")):
    names = set()
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            names.add(line.split("=", 1)[0].strip())
    return sorted(names)


def verify_against_example():
    code_vars = set(find_env_vars())
    documented = set(documented_env_vars())
    missing_in_example = sorted(code_vars - documented)
    unused_in_code = sorted(documented - code_vars)

    print("=== ENV VAR VERIFICATION ===")
    print(f"Code references: {len(code_vars)} unique vars")
    print(f".env.example has: {len(documented)} vars")
    print("")
    if missing_in_example:
        print(f"MISSING IN .env.example ({len(missing_in_example)}):")
        for v in missing_in_example:
            print(f"  - {v}")
    else:
        print("No missing vars against .env.example.")
    print("")
    if unused_in_code:
        print(f"UNUSED IN CODE ({len(unused_in_code)}):")
        for v in unused_in_code:
            print(f"  - {v}")
    else:
        print("No unused documented vars.")


if __name__ == "__main__":
    verify_against_example()

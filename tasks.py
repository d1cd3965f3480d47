from pathlib import Path
from invoke import task
import botocore
import shutil
import os
import json
from collections import Counter
from dotenv import load_dotenv


load_dotenv()


APP_NAME = "gfsprune"
VERSION = os.getenv("VERSION", "0.1.0")
BUILD_DIR = Path(os.getenv("BUILD_DIR", "dist"))
BIN_NAME = APP_NAME


def _echo(ctx, cmd: str) -> None:
    ctx.run(cmd, echo=True)


def _analyze_bandit_report(report_path: Path) -> bool:
    """Print a summary of a Bandit JSON report. Returns True if no HIGH findings."""
    if not report_path.exists():
        print(f"⚠️ Bandit report not generated at {report_path}")
        return False

    print("\n📊 Bandit Security Analysis:")
    with open(report_path, "r", encoding="utf-8") as f:
        results = json.load(f).get("results", [])

    if not results:
        print("   ✅ No security issues found!")
        return True

    severity_counts = Counter(r.get("issue_severity", "UNDEFINED") for r in results)
    print(f"   🔍 Total findings: {len(results)}")
    for severity, emoji in (("HIGH", "🔴"), ("MEDIUM", "🟡"), ("LOW", "🔵")):
        count = severity_counts.get(severity, 0)
        if count:
            print(f"   {emoji} {severity.capitalize()}: {count}")

    test_counts = Counter(r.get("test_name", "unknown") for r in results)
    print("   📋 Top issues:")
    for test_name, count in test_counts.most_common(5):
        print(f"      • {test_name}: {count}")

    return severity_counts.get("HIGH", 0) == 0


@task
def clean(ctx):
    for path in (BUILD_DIR, Path("build"), Path(f"{BIN_NAME}.spec")):
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()


@task(help={"k": "Only run tests matching this expression"})
def test(ctx, k: str = ""):
    selector = f" -k '{k}'" if k else ""
    _echo(ctx, f"python3 -m pytest -q{selector}")


@task
def security_scan(ctx):
    """Run Bandit over the package and fail on HIGH severity findings."""
    print("\n🛡️  Running security scan...")
    reports_dir = BUILD_DIR / "security"
    reports_dir.mkdir(parents=True, exist_ok=True)
    report_path = reports_dir / "bandit.json"

    # Bandit exits non-zero whenever it finds anything; the report decides.
    ctx.run(
        f"python3 -m bandit -r {APP_NAME} -f json -o {report_path}",
        warn=True,
    )

    print("\n" + "=" * 50)
    if not _analyze_bandit_report(report_path):
        print("❌ SECURITY SCAN FAILED - Critical issues found!")
        print("=" * 50)
        raise SystemExit("Security scan failed - critical issues found!")
    print("✅ SECURITY SCAN PASSED - No critical issues found!")
    print("=" * 50)


@task(
    help={
        "distdir": "Output directory (default: dist)",
    }
)
def build_bin(ctx, distdir: str = "dist"):
    botocore_path = botocore.__path__[0]
    data_path = Path(botocore_path) / "data"
    add_data_arg = f'--add-data "{data_path}{os.pathsep}botocore/data"'
    _echo(
        ctx,
        f"python3 -m PyInstaller -F -n {BIN_NAME} main.py --distpath {distdir} {add_data_arg}",
    )


@task(help={"tag": "Version tag (optional, will be auto-incremented if not provided)"})
def release(ctx, tag: str = None):
    """Test, scan, build the binary and push a new version tag."""
    print("🚀 Starting release workflow...")

    test(ctx)
    security_scan(ctx)
    build_bin(ctx)

    if not tag:
        last_tag = ctx.run(
            "git tag --sort=-v:refname | head -n1", hide=True, warn=True
        ).stdout.strip() or "v0.0.0"
        version_parts = last_tag.lstrip("v").split(".")
        if len(version_parts) == 3 and all(p.isdigit() for p in version_parts):
            a, b, c = map(int, version_parts)
            tag = f"v{a}.{b}.{c+1}"
        else:
            tag = "v0.1.0"

    result = ctx.run(f"git tag {tag}", hide=True, warn=True)
    if result.failed:
        print(f"🏷️  Tag {tag} already exists")
        return
    print(f"🏷️  Tag {tag} created")

    ctx.run(f"git push origin {tag}", hide=True)
    print(f"📤 Tag {tag} pushed to repository")

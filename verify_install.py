"""
Installation verification script.

Run this after installation to verify all components are importable.
"""

import sys
import importlib
from pathlib import Path


def check_python_version():
    """Check Python version."""
    print("Checking Python version...")
    version = sys.version_info
    if version >= (3, 10):
        print(f"  ✅ Python {version.major}.{version.minor}.{version.micro}")
        return True
    print(f"  ❌ Python {version.major}.{version.minor}.{version.micro} (need 3.10+)")
    return False


def check_imports():
    """Check required package imports."""
    print("\nChecking required packages...")

    packages = [
        ("numpy", "NumPy"),
        ("soxr", "pysoxr"),
        ("pydantic", "Pydantic"),
        ("dotenv", "python-dotenv"),
        ("yaml", "PyYAML"),
        ("websockets", "websockets"),
    ]

    # Need native libraries or OS privileges; the relay server runs without them
    optional = [
        ("sounddevice", "SoundDevice (PortAudio)"),
        ("azure.cognitiveservices.speech", "Azure Speech SDK"),
        ("keyboard", "keyboard"),
    ]

    all_ok = True

    for module, name in packages:
        try:
            importlib.import_module(module)
            print(f"  ✅ {name}")
        except ImportError:
            print(f"  ❌ {name} - run: pip install -e .")
            all_ok = False

    print("\nChecking client-side packages (not needed for 'serve')...")
    for module, name in optional:
        try:
            importlib.import_module(module)
            print(f"  ✅ {name}")
        except (ImportError, OSError):
            print(f"  ⚠️  {name} - the talk client will not work without it")

    return all_ok


def check_package_structure():
    """Check pttrelay module structure."""
    print("\nChecking pttrelay package...")

    try:
        from pttrelay import __version__
        print(f"  ✅ pttrelay package (version {__version__})")

        modules = [
            "pttrelay.config",
            "pttrelay.models",
            "pttrelay.protocol",
            "pttrelay.registry",
            "pttrelay.server",
            "pttrelay.activity",
            "pttrelay.devices",
            "pttrelay.session",
            "pttrelay.client",
            "pttrelay.cli",
        ]

        for module in modules:
            importlib.import_module(module)
            print(f"  ✅ {module}")

        return True

    except Exception as e:
        print(f"  ❌ Error loading pttrelay: {e}")
        return False


def check_config_files():
    """Check configuration files exist."""
    print("\nChecking configuration files...")

    files = {
        ".env.example": "required",
        "config.example.yaml": "required",
        ".env": "optional (create from .env.example)",
    }

    all_ok = True
    for filename, status in files.items():
        if Path(filename).exists():
            print(f"  ✅ {filename}")
        elif "optional" in status:
            print(f"  ⚠️  {filename} - {status}")
        else:
            print(f"  ❌ {filename} - {status}")
            all_ok = False

    return all_ok


def main():
    """Run all checks."""
    print("=" * 60)
    print("PTT Relay - Installation Verification")
    print("=" * 60)

    checks = [
        check_python_version(),
        check_imports(),
        check_package_structure(),
        check_config_files(),
    ]

    print("\n" + "=" * 60)
    if all(checks):
        print("✅ All checks passed! Installation verified.")
        print("\nNext steps:")
        print("  1. Copy .env.example to .env")
        print("  2. Run: python -m pttrelay.cli serve")
        print("  3. Run: python -m pttrelay.cli talk --name Alpha")
        print("=" * 60)
        return 0

    print("❌ Some checks failed. Please fix the issues above.")
    print("=" * 60)
    return 1


if __name__ == '__main__':
    sys.exit(main())

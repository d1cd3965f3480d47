#!/usr/bin/env python3
import subprocess
import os


def sh(cmd):
    cmd_list = cmd.split() if isinstance(cmd, str) else cmd
    subprocess.check_call(cmd_list)  # nosec B603


def main():
    ref_type = os.getenv("GITHUB_REF_TYPE", "")
    ref = os.getenv("GITHUB_REF", "")

    print(f"DEBUG: Ref type: {ref_type}")
    print(f"DEBUG: Ref: {ref}")

    if ref_type == "tag":
        tag = ref.rsplit("/", 1)[-1]
        print(f"🏷️  Tag push detected: {tag}, building binary...")
        sh(["python", "-m", "invoke", "build-bin"])
        print(f"✅ Binary for {tag} built in dist/")
    else:
        print("🌿 Branch push detected, running tests and tagging...")
        sh(["python", "-m", "invoke", "release"])
        print("✅ Release workflow executed successfully!")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Quick setup verification script
Run this to check if your environment is configured correctly
"""

import sys
import os

def check_python_version():
    """Check Python version"""
    version = sys.version_info
    if version.major < 3 or (version.major == 3 and version.minor < 11):
        print("❌ Python 3.11+ required")
        return False
    print(f"✅ Python {version.major}.{version.minor}.{version.micro}")
    return True

def check_dependencies():
    """Check if required packages are installed"""
    required = [
        'fastapi',
        'uvicorn',
        'sqlalchemy',
        'alembic',
        'psycopg2',
        'firebase_admin',
        'google.cloud.storage',
        'pydantic',
        'pydantic_settings',
        'email_validator',
        'multipart',
        'cryptography',
        'redis',
        'click',
    ]
    missing = []
    for package in required:
        try:
            __import__(package)
            print(f"✅ {package}")
        except ImportError:
            print(f"❌ {package} - MISSING")
            missing.append(package)
    return len(missing) == 0

def check_env_file():
    """Check if .env file exists"""
    if os.path.exists('.env'):
        print("✅ .env file exists")
        return True
    else:
        print("❌ .env file not found")
        print("   Create one with DATABASE_URL, FIREBASE_* , SECRET_KEY and ENCRYPTION_KEY")
        return False

def check_firebase_credentials():
    """Check if Firebase credentials path exists and a storage bucket is set"""
    try:
        from app.core.config import settings
        if not settings.firebase_storage_bucket:
            print("⚠️  FIREBASE_STORAGE_BUCKET not set - listing photos cannot be uploaded")
        if os.path.exists(settings.firebase_credentials_path):
            print(f"✅ Firebase credentials found: {settings.firebase_credentials_path}")
            return True
        else:
            print(f"❌ Firebase credentials not found: {settings.firebase_credentials_path}")
            return False
    except Exception as e:
        print(f"⚠️  Could not check Firebase credentials: {e}")
        return False

def check_redis():
    """Check that Redis answers (locks and rate limits degrade without it)"""
    try:
        from app.core.redis_cache import RedisCache
        if RedisCache().ping():
            print("✅ Redis reachable")
            return True
        print("⚠️  Redis not reachable - running without locks and rate limits")
        return True
    except Exception as e:
        print(f"⚠️  Could not check Redis: {e}")
        return True

def main():
    print("🔍 Checking Marketplace Backend Setup...\n")

    checks = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        (".env File", check_env_file),
        ("Firebase Credentials", check_firebase_credentials),
        ("Redis", check_redis),
    ]

    results = []
    for name, check_func in checks:
        print(f"\n{name}:")
        result = check_func()
        results.append(result)

    print("\n" + "="*50)
    if all(results):
        print("✅ All checks passed! You're ready to run the server.")
        print("\nNext steps:")
        print("  1. Run migrations: alembic upgrade head")
        print("  2. Seed categories: marketplace-admin seed-categories")
        print("  3. Start server: uvicorn app.main:app --reload")
    else:
        print("❌ Some checks failed. Please fix the issues above.")
        sys.exit(1)

if __name__ == "__main__":
    main()

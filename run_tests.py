#!/usr/bin/env python3
"""
测试运行脚本

    python run_tests.py                   # 全部测试
    python run_tests.py --type unit       # 跳过 HTTP 流程测试
    python run_tests.py -m refunds -v     # 只跑 tests/test_refunds.py
    python run_tests.py --coverage
"""
import argparse
import importlib.util
import os
import shutil
import subprocess
import sys
from pathlib import Path

COVERAGE_TARGETS = ["api", "auth", "models", "services", "utils"]

# 包名 -> 导入名
TEST_REQUIREMENTS = {
    "pytest": "pytest",
    "pytest-asyncio": "pytest_asyncio",
    "pytest-cov": "pytest_cov",
    "httpx": "httpx",
    "fastapi": "fastapi",
}

MARKERS = {"unit": "not integration", "integration": "integration", "all": None}

ARTIFACTS = [".coverage", "htmlcov", ".pytest_cache", "test_logs"]


def check_dependencies() -> bool:
    """检查测试依赖"""
    missing = [pkg for pkg, module in TEST_REQUIREMENTS.items() if importlib.util.find_spec(module) is None]
    if missing:
        print(f"❌ 缺少依赖包: {', '.join(missing)}")
        print("请运行: pip install -e .[test]")
        return False
    return True


def build_env() -> dict:
    """测试环境变量：内存数据库、模拟支付网关"""
    env = os.environ.copy()
    env.update({
        "TESTING": "true",
        "APP_ENV": "testing",
        "DATABASE_URL": "sqlite://",
        "WECHAT_MCH_ID": "",
        "WECHAT_API_KEY": "",
    })
    env.setdefault("LOG_DIR", "test_logs")
    return env


def build_command(test_type: str, module: str = None, verbose: bool = False, coverage: bool = False) -> list:
    target = f"tests/test_{module}.py" if module else "tests/"
    cmd = [sys.executable, "-m", "pytest", target, "--tb=short", "--strict-markers", "--disable-warnings"]

    marker = MARKERS[test_type]
    if marker:
        cmd += ["-m", marker]
    if verbose:
        cmd.append("-v")
    if coverage:
        cmd += [f"--cov={t}" for t in COVERAGE_TARGETS]
        cmd += ["--cov-report=html", "--cov-report=term-missing"]
    return cmd


def clean_test_files():
    """清理覆盖率报告、缓存与测试日志"""
    for name in ARTIFACTS:
        path = Path(name)
        if not path.exists():
            continue
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            print(f"🧹 已删除: {name}")
        except OSError as e:
            print(f"⚠️ 删除失败 {name}: {e}")


def main() -> int:
    parser = argparse.ArgumentParser(description="风追后端测试运行器")
    parser.add_argument("--type", choices=list(MARKERS), default="all", help="测试类型 (默认: all)")
    parser.add_argument("-m", "--module", help="只运行某个模块，如 payments、refunds、settlement")
    parser.add_argument("-v", "--verbose", action="store_true", help="详细输出")
    parser.add_argument("--coverage", action="store_true", help="生成覆盖率报告")
    parser.add_argument("--clean", action="store_true", help="清理测试产物后退出")
    args = parser.parse_args()

    if args.clean:
        clean_test_files()
        return 0

    if not check_dependencies():
        return 1

    if args.module and not Path(f"tests/test_{args.module}.py").exists():
        print(f"❌ 测试模块不存在: tests/test_{args.module}.py")
        return 1

    cmd = build_command(args.type, args.module, args.verbose, args.coverage)
    print(f"执行命令: {' '.join(cmd)}")
    if subprocess.run(cmd, env=build_env()).returncode != 0:
        print("\n❌ 测试失败！")
        return 1

    print("\n🎉 所有测试通过！")
    if args.coverage:
        print("📊 覆盖率报告已生成到 htmlcov/ 目录")
    return 0


if __name__ == "__main__":
    sys.exit(main())

# setup.py
from setuptools import setup, find_packages

setup(
    name="proxy_deploy",
    version="0.1.0",
    packages=find_packages(),
    package_data={"proxy_deploy": ["data/*.json"]},
    python_requires=">=3.9",
    install_requires=[
        "websockets",         # node connection
        "wasmtime",           # WASM validation
        "msgpack",            # extrinsic encoding
        "PyNaCl",             # ed25519
        "cryptography",       # ecdsa
        "pycryptodome",       # blake2b
        "prometheus_client",  # metrics
        "psutil",             # monitoring
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
    },
    entry_points={
        "console_scripts": [
            "proxy-deploy=proxy_deploy.deploy:run",
        ],
    },
)

from setuptools import setup, find_packages

setup(
    name="cdn_uploader",
    version="0.1.0",
    packages=find_packages(),
    install_requires=["httpx>=0.26.0"],
    entry_points={
        "console_scripts": [
            "cdn-uploader=cdn_uploader.cli:main",
        ],
    },
)

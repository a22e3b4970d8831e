from setuptools import setup


setup(
    name="sheet-insight",
    version="0.1.0",
    description="Local spreadsheet structure inference, matrix transposition and dashboards for Excel and CSV files",
    packages=["sheet_insight"],
    install_requires=[
        "pandas<3",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
        "pyyaml",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "sheet-insight=sheet_insight.cli:main",
        ]
    },
)

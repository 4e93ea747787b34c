from setuptools import setup

APP = ["app/UptimeHours.py"]
DATA_FILES = []
OPTIONS = {
    "argv_emulation": True,
    "plist": {
        "LSUIElement": True,
    },
    "packages": ["rumps", "uptime_hours"],
}

setup(
    name="uptime-hours",
    version="0.1.0",
    description="Working hours and flex-time reconstructed from power events",
    package_dir={"": "src"},
    packages=["uptime_hours"],
    python_requires=">=3.10",
    install_requires=[
        "typer>=0.9",
        'rumps>=0.4; sys_platform == "darwin"',
    ],
    extras_require={
        "test": ["pytest>=7"],
        "app": ['py2app; sys_platform == "darwin"'],
    },
    entry_points={
        "console_scripts": ["uptime-hours = uptime_hours.cli:app"],
        "gui_scripts": ["uptime-hours-menubar = uptime_hours.menubar:main"],
    },
    app=APP,
    data_files=DATA_FILES,
    options={"py2app": OPTIONS},
)

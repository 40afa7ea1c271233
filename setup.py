from setuptools import setup, find_packages

setup(
    name="budget_buckets",
    version="0.1",
    packages=find_packages(exclude=['tests', 'tests.*']),
    py_modules=['main'],
    install_requires=[
        'streamlit',
        'firebase-admin',
        'google-api-core',
        'Pyrebase4',
        'requests',
        'stripe>=8',
        'python-dotenv',
        'pydantic>=2',
        'fastapi',
        'uvicorn'
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx'
        ]
    },
)

import logging

from setuptools import setup, find_packages

log = logging.getLogger(__name__)

setup(
	name='access_core',
	version='0.1.0.dev0',
	packages=find_packages(include=['access_core', 'access_core.*']),
	author='Access Core Developers',
	description='Issues, validates and redeems early access invitation codes',
	python_requires='>=3.9',
	install_requires=[
		'gconf',
		'tinydb',
		'uvicorn',
		'fastapi',
		'pydantic>=2',
		'pyyaml',
		'psycopg[binary]',
		'psycopg-pool',
		'yoyo-migrations',
		'cachetools',
		'blinker',
	],
	extras_require={
		'dev': [
			'setuptools',
			'ruff',
			'pytest',
			'pytest-mock',
			'pytest-asyncio',
			'asgi-lifespan==2.*',
			'httpx',
		]
	},
)

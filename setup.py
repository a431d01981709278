from setuptools import setup

setup(
    name='gateway_session',
    version='0.1.0',
    description='Resumable WebSocket session for a push-based real-time gateway.',
    packages=['gateway_session'],
    python_requires='>=3.8',
    install_requires=['wsproto', 'aiohttp'],
    extras_require={
        'perf': ['ujson'],
        'test': ['pytest', 'pytest-asyncio'],
    },
)

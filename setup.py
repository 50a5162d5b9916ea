from setuptools import setup

setup(
    name='dioscuri',
    version='0.2',
    description="Gemini protocol client with trust-on-first-use certificates",
    classifiers=[
        'License :: OSI Approved :: BSD License',
        'Programming Language :: Python :: 3 :: Only',
        'Topic :: Communications',
        'Intended Audience :: Developers',
        'Environment :: Console',
        'Development Status :: 4 - Beta',
    ],
    python_requires='>=3.10',
    py_modules = ["dioscuri", "dioerrors", "dioutils", "geminiurl",
                  "geminiresponse", "GeminiSession", "tofu"],
    entry_points={
        "console_scripts": ["dioscuri=dioscuri:main"]
    },
    install_requires=["cryptography>=42"],
    extras_require={
        "proctitle": ["setproctitle"],
        "test": ["pytest"],
    },
)

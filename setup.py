# setup.py
from setuptools import setup, find_packages
import os

# Read README for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), "README.md")
    if os.path.exists(readme_path):
        with open(readme_path, "r", encoding="utf-8") as f:
            return f.read()
    return "Vocal Aligner - Phoneme forced alignment for speech and singing"

setup(
    name="vocal-aligner",
    version="0.1.0",
    packages=find_packages(exclude=["tests*", "docs*", "examples*"]),
    python_requires=">=3.8",

    # Core dependencies
    install_requires=[
        "torch>=1.9.0",
        "torchaudio>=0.9.0",
        "numpy>=1.19.0",
        "onnxruntime>=1.14.0",
        "click>=8.0.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=3.0.0",
            "librosa>=0.8.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
        ],
        "test": [
            "pytest>=6.0",
            "pytest-cov>=3.0.0",
            "librosa>=0.8.0",
            "soundfile>=0.10.0",
        ],
        "gpu": [
            "onnxruntime-gpu>=1.14.0",
        ],
        "audio": [
            "soundfile>=0.10.0",
        ],
    },

    # CLI entry point
    entry_points={
        "console_scripts": [
            "valign=vocal_aligner.cli:main",
        ],
    },

    # Package metadata
    description="Vocal Aligner - Phoneme forced alignment with constrained Viterbi decoding and neural boundary refinement",
    long_description=read_readme(),
    long_description_content_type="text/markdown",

    # Package classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio :: Analysis",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Text Processing :: Linguistic",
    ],

    # Keywords for discovery
    keywords=[
        "phoneme", "alignment", "speech", "singing", "audio", "forced-alignment",
        "viterbi", "onnx", "textgrid", "labeling",
    ],

    include_package_data=True,
    zip_safe=False,
)

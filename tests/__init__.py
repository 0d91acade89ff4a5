"""
Stereo IP Test Suite

This package contains tests for stereo interest point detection and matching.

Structure:
- unit/: Unit tests for individual components
- integration/: End-to-end matching on synthetic stereo pairs
- synthetic.py: Synthetic images and camera rigs shared by both
"""

"""Building blocks for feature-based visual SLAM: EPnP and Sim3 RANSAC solvers, settings, trajectory export and thread control flags."""

__version__ = "0.1.0"
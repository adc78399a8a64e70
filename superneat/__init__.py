"""
SuperNEAT: species-based neuroevolution of game-playing controllers

Genomes are bred, grouped into compatibility species, and scored by running
each one through a simulation. Evaluation is embarrassingly parallel;
speciation and fitness sharing are sequential passes after it.
"""

__version__ = "0.1.0"

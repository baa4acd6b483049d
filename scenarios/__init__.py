# AccessHub - Demo Scenarios
# Sample data and a scripted walkthrough of the access workflow

from .demo_data import load_demo_data
from .walkthrough import run_scenarios

__all__ = ['load_demo_data', 'run_scenarios']

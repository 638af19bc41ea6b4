from .constants import *
from .folders import *

from ez1bridge.adapters.ez1 import EZ1Client

__all__ = ['EZ1Client']

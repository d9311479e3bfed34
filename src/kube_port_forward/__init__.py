__version__ = "0.1.0"
__description__ = (
    "Kubernetes controller that keeps router port forwards in sync with annotated LoadBalancer Services"
)

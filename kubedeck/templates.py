"""Example manifests offered by the UI as a starting point for new resources."""

NAMESPACE = """\
apiVersion: v1
kind: Namespace
metadata:
  name: my-namespace
"""

CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: my-config
  namespace: default
data:
  LOG_LEVEL: info
  app.properties: |
    greeting=hello
"""

DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: nginx-deployment
  namespace: default
  labels:
    app: nginx
spec:
  replicas: 2
  selector:
    matchLabels:
      app: nginx
  template:
    metadata:
      labels:
        app: nginx
    spec:
      containers:
        - name: nginx
          image: nginx:1.25
          ports:
            - containerPort: 80
"""

SERVICE = """\
apiVersion: v1
kind: Service
metadata:
  name: my-service
  namespace: default
spec:
  selector:
    app: nginx
  ports:
    - protocol: TCP
      port: 80
      targetPort: 80
"""

POD = """\
apiVersion: v1
kind: Pod
metadata:
  name: nginx
  namespace: default
spec:
  containers:
    - name: nginx
      image: nginx:1.25
      ports:
        - containerPort: 80
"""

REPLICASET = """\
apiVersion: apps/v1
kind: ReplicaSet
metadata:
  name: frontend
  namespace: default
  labels:
    tier: frontend
spec:
  replicas: 3
  selector:
    matchLabels:
      tier: frontend
  template:
    metadata:
      labels:
        tier: frontend
    spec:
      containers:
        - name: web
          image: nginx:1.25
"""

TEMPLATES = {
    'namespace': NAMESPACE,
    'configmap': CONFIGMAP,
    'deployment': DEPLOYMENT,
    'service': SERVICE,
    'pod': POD,
    'replicaset': REPLICASET,
}


def get_template(kind: str) -> str:
    """Example manifest for a kind (case-insensitive); "" for kinds without one."""
    return TEMPLATES.get((kind or "").strip().lower(), "")

from unittest import TestCase

from parameterized import parameterized

from pgoperator.k8s_operator.database import DatabaseSpec, S3Backend, GCSBackend, AzureBackend, SwiftBackend, \
    LocalBackend, parse_backend
from pgoperator.tests.testcase import postgres_body


class DatabaseSpecTestCase(TestCase):

    def test_defaults(self):
        body = postgres_body()
        del body['spec']['replicas']
        del body['spec']['storageType']
        db = DatabaseSpec.from_body(body)
        self.assertEqual(1, db.replicas)
        self.assertFalse(db.is_ephemeral)
        self.assertIsNone(db.archiver)
        self.assertIsNone(db.init_wal)
        self.assertIsNone(db.monitor)
        self.assertEqual({}, db.pod_spec)

    def test_names(self):
        db = DatabaseSpec.from_body(postgres_body(name='db1'))
        names = [db.offshoot_name, db.governing_service_name, db.standby_service_name, db.stats_service_name]
        self.assertEqual(['db1', 'db1-pods', 'db1-standby', 'db1-stats'], names)
        self.assertEqual(db.offshoot_name, db.service_name)
        self.assertEqual('/metrics', db.stats_path)

    def test_labels(self):
        body = postgres_body()
        body['metadata']['labels'] = {'team': 'a'}
        db = DatabaseSpec.from_body(body)
        self.assertEqual({
            'app.kubernetes.io/name': 'postgreses.kubedb.com',
            'app.kubernetes.io/instance': 'pg'
        }, db.offshoot_selectors())
        self.assertEqual('a', db.offshoot_labels()['team'])
        self.assertEqual('kubedb.com', db.offshoot_labels()['app.kubernetes.io/managed-by'])
        self.assertEqual('stats', db.stats_service_labels()['kubedb.com/role'])

    def test_owner_reference(self):
        reference = DatabaseSpec.from_body(postgres_body()).owner_reference()
        self.assertEqual('uid-pg', reference['uid'])
        self.assertEqual('Postgres', reference['kind'])
        self.assertTrue(reference['controller'])

    def test_body_not_aliased(self):
        body = postgres_body(podTemplate={'spec': {'env': [{'name': 'A', 'value': '1'}]}})
        db = DatabaseSpec.from_body(body)
        db.pod_spec['env'].append({'name': 'B'})
        self.assertEqual(1, len(body['spec']['podTemplate']['spec']['env']))

    def test_data_restored(self):
        body = postgres_body()
        self.assertFalse(DatabaseSpec.from_body(body).data_restored)
        body['status'] = {'conditions': [{'type': 'DataRestored', 'status': 'False'}]}
        self.assertFalse(DatabaseSpec.from_body(body).data_restored)
        body['status'] = {'conditions': [{'type': 'DataRestored', 'status': 'True'}]}
        self.assertTrue(DatabaseSpec.from_body(body).data_restored)

    def test_archiver_without_storage(self):
        db = DatabaseSpec.from_body(postgres_body(archiver={}))
        self.assertIsNone(db.archiver)

    def test_init_script(self):
        db = DatabaseSpec.from_body(
            postgres_body(init={'script': {
                'scriptPath': 'init',
                'configMap': {
                    'name': 'pg-init'
                }
            }}))
        self.assertEqual({'configMap': {'name': 'pg-init'}}, db.init_script)

    def test_pitr(self):
        db = DatabaseSpec.from_body(
            postgres_body(init={
                'postgresWAL': {
                    'storageSecretName': 'restore-secret',
                    'gcs': {
                        'bucket': 'b'
                    },
                    'pitr': {
                        'targetInclusive': True,
                        'targetXID': '42'
                    },
                }
            }))
        self.assertEqual(GCSBackend(bucket='b'), db.init_wal.backend)
        self.assertEqual('restore-secret', db.init_wal.secret_name)
        self.assertTrue(db.init_wal.pitr.inclusive)
        self.assertEqual('42', db.init_wal.pitr.xid)
        self.assertEqual('', db.init_wal.pitr.time)

    def test_monitor(self):
        db = DatabaseSpec.from_body(
            postgres_body(monitor={
                'agent': 'prometheus.io/builtin',
                'prometheus': {
                    'exporter': {
                        'port': 9187,
                        'args': ['--extend.query-path=/q.yaml']
                    }
                }
            }))
        self.assertEqual('prometheus.io', db.monitor.vendor)
        self.assertEqual(9187, db.monitor.port)
        self.assertEqual(['--extend.query-path=/q.yaml'], db.monitor.args)

    def test_monitor_default_port(self):
        db = DatabaseSpec.from_body(postgres_body(monitor={'agent': 'prometheus.io/operator'}))
        self.assertEqual(56790, db.monitor.port)

    @parameterized.expand([
        ('', 'kubedb/default/pg/archive'),
        ('backups', 'backups/kubedb/default/pg/archive'),
        ('/backups/', '/backups/kubedb/default/pg/archive'),
    ])
    def test_wal_data_dir(self, prefix: str, expected: str) -> None:
        db = DatabaseSpec.from_body(
            postgres_body(archiver={'storage': {
                'storageSecretName': 's',
                's3': {
                    'bucket': 'b',
                    'prefix': prefix
                }
            }}))
        self.assertEqual(expected, db.wal_data_dir())


class BackendTestCase(TestCase):

    @parameterized.expand([
        ({'s3': {'bucket': 'b', 'endpoint': 'e'}}, S3Backend(bucket='b', endpoint='e')),
        ({'gcs': {'bucket': 'b'}}, GCSBackend(bucket='b')),
        ({'azure': {'container': 'c', 'prefix': 'p'}}, AzureBackend(container='c', prefix='p')),
        ({'swift': {'container': 'c'}}, SwiftBackend(container='c')),
        ({'local': {'mountPath': '/m', 'subPath': 's', 'hostPath': {'path': '/h'}}},
         LocalBackend(mount_path='/m', sub_path='s', volume_source={'hostPath': {'path': '/h'}})),
        ({'s3': {'bucket': 'b'}, 'gcs': {'bucket': 'g'}}, S3Backend(bucket='b')),
        ({'gcs': {'bucket': 'g'}, 'local': {'mountPath': '/m'}}, GCSBackend(bucket='g')),
        ({}, None),
        (None, None),
    ])
    def test_parse_backend(self, spec, expected) -> None:
        self.assertEqual(expected, parse_backend(spec))

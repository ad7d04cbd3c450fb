from unittest import TestCase

from pgoperator.k8s_operator.upsert import upsert_by_name, upsert_env_vars, merge_container, merge_containers, \
    merge_volume_claims, merge_volumes, merge_variant, overlay, ensure_owner_reference, merge_service_ports, \
    upsert_service_ports, apply_metadata, set_or_remove


class UpsertTestCase(TestCase):

    ENV = [{'name': 'A', 'value': '1'}, {'name': 'B', 'value': '2'}, {'name': 'C', 'value': '3'}]

    def test_replace_keeps_position(self):
        result = upsert_by_name(self.ENV, {'name': 'B', 'value': 'x'})
        self.assertEqual([{'name': 'A', 'value': '1'}, {'name': 'B', 'value': 'x'}, {'name': 'C', 'value': '3'}], result)

    def test_append_new(self):
        result = upsert_by_name(self.ENV, {'name': 'D', 'value': '4'})
        self.assertEqual(4, len(result))
        self.assertEqual({'name': 'D', 'value': '4'}, result[-1])

    def test_twice_same_as_once(self):
        item = {'name': 'D', 'value': '4'}
        once = upsert_by_name(self.ENV, item)
        self.assertEqual(once, upsert_by_name(once, item))

    def test_input_untouched(self):
        env = [{'name': 'A', 'value': '1'}]
        upsert_by_name(env, {'name': 'A', 'value': '2'})
        self.assertEqual([{'name': 'A', 'value': '1'}], env)

    def test_none_collection(self):
        self.assertEqual([{'name': 'A'}], upsert_by_name(None, {'name': 'A'}))

    def test_later_env_wins(self):
        result = upsert_env_vars([], {'name': 'A', 'value': '1'}, {'name': 'B', 'value': '2'},
                                 {'name': 'A', 'value': '3'})
        self.assertEqual([{'name': 'A', 'value': '3'}, {'name': 'B', 'value': '2'}], result)


class OverlayTestCase(TestCase):

    def test_overlay(self):
        current = {'a': {'b': 1, 'c': 2}, 'd': [1, 2], 'e': 'x'}
        result = overlay(current, {'a': {'b': 3}, 'd': [3], 'e': None})
        self.assertEqual({'a': {'b': 3, 'c': 2}, 'd': [3]}, result)
        self.assertEqual({'a': {'b': 1, 'c': 2}, 'd': [1, 2], 'e': 'x'}, current)

    def test_variant_same_kind_keeps_defaults(self):
        current = {'name': 'config', 'secret': {'secretName': 'a', 'defaultMode': 420}}
        self.assertEqual({
            'name': 'config',
            'secret': {
                'secretName': 'b',
                'defaultMode': 420
            }
        }, merge_variant(current, {
            'name': 'config',
            'secret': {
                'secretName': 'b'
            }
        }))

    def test_variant_other_kind_replaces(self):
        current = {'name': 'data', 'emptyDir': {'sizeLimit': '1Gi'}}
        desired = {'name': 'data', 'persistentVolumeClaim': {'claimName': 'data'}}
        self.assertEqual(desired, merge_variant(current, desired))

    def test_merge_volumes(self):
        volumes = [{'name': 'foreign', 'emptyDir': {}}, {'name': 'config', 'configMap': {'name': 'a', 'defaultMode': 420}}]
        result = merge_volumes(volumes, {'name': 'config', 'configMap': {'name': 'a'}}, {'name': 'shm', 'emptyDir': {}})
        self.assertEqual(['foreign', 'config', 'shm'], [volume['name'] for volume in result])
        self.assertEqual(420, result[1]['configMap']['defaultMode'])

    def test_volume_claims_by_metadata_name(self):
        claims = [{
            'metadata': {
                'name': 'data',
                'creationTimestamp': None
            },
            'spec': {
                'accessModes': ['ReadWriteOnce'],
                'volumeMode': 'Filesystem'
            },
            'status': {
                'phase': 'Pending'
            },
        }]
        result = merge_volume_claims(claims, {'metadata': {'name': 'data'}, 'spec': {'accessModes': ['ReadWriteMany']}})
        self.assertEqual([{
            'metadata': {
                'name': 'data',
                'creationTimestamp': None
            },
            'spec': {
                'accessModes': ['ReadWriteMany'],
                'volumeMode': 'Filesystem'
            },
            'status': {
                'phase': 'Pending'
            },
        }], result)

    def test_volume_claims_append(self):
        result = merge_volume_claims(None, {'metadata': {'name': 'data'}, 'spec': {}})
        self.assertEqual([{'metadata': {'name': 'data'}, 'spec': {}}], result)


class MergeContainerTestCase(TestCase):

    def test_keeps_foreign_fields(self):
        current = {
            'name': 'postgres',
            'image': 'postgres:12',
            'terminationMessagePath': '/dev/termination-log',
            'env': [{'name': 'INJECTED', 'value': 'x'}, {'name': 'STANDBY', 'value': 'hot'}],
        }
        desired = {'name': 'postgres', 'image': 'postgres:13', 'env': [{'name': 'STANDBY', 'value': 'warm'}]}
        merged = merge_container(current, desired)
        self.assertEqual('postgres:13', merged['image'])
        self.assertEqual('/dev/termination-log', merged['terminationMessagePath'])
        self.assertEqual([{'name': 'INJECTED', 'value': 'x'}, {'name': 'STANDBY', 'value': 'warm'}], merged['env'])

    def test_none_removes(self):
        merged = merge_container({'name': 'postgres', 'livenessProbe': {'tcpSocket': {'port': 5432}}}, {
            'name': 'postgres',
            'livenessProbe': None
        })
        self.assertNotIn('livenessProbe', merged)

    def test_readiness_check_defaults_kept(self):
        current = {
            'name': 'postgres',
            'readinessProbe': {
                'tcpSocket': {
                    'port': 5432
                },
                'timeoutSeconds': 1,
                'periodSeconds': 10,
                'failureThreshold': 3
            }
        }
        merged = merge_container(current, {'name': 'postgres', 'readinessProbe': {'tcpSocket': {'port': 5432}}})
        self.assertEqual(current, merged)

    def test_liveness_check_handler_change_replaces(self):
        current = {'name': 'postgres', 'livenessProbe': {'tcpSocket': {'port': 5432}, 'periodSeconds': 10}}
        handler = {'exec': {'command': ['pg_isready']}}
        merged = merge_container(current, {'name': 'postgres', 'livenessProbe': handler})
        self.assertEqual(handler, merged['livenessProbe'])

    def test_merge_containers(self):
        containers = [{'name': 'sidecar', 'image': 'busybox'}, {'name': 'postgres', 'image': 'postgres:12'}]
        merged = merge_containers(containers, {'name': 'postgres', 'image': 'postgres:13'}, {
            'name': 'exporter',
            'image': 'exporter'
        })
        self.assertEqual(['sidecar', 'postgres', 'exporter'], [container['name'] for container in merged])
        self.assertEqual('postgres:13', merged[1]['image'])


class MetadataTestCase(TestCase):

    OWNER = {'apiVersion': 'kubedb.com/v1alpha2', 'kind': 'Postgres', 'name': 'pg', 'uid': 'uid-pg', 'controller': True}

    def test_owner_reference_not_duplicated(self):
        metadata = ensure_owner_reference({'name': 'pg'}, self.OWNER)
        metadata = ensure_owner_reference(metadata, self.OWNER)
        self.assertEqual([self.OWNER], metadata['ownerReferences'])

    def test_owner_reference_keeps_others(self):
        other = {'apiVersion': 'v1', 'kind': 'ConfigMap', 'name': 'other', 'uid': 'uid-other'}
        metadata = ensure_owner_reference({'ownerReferences': [other]}, self.OWNER)
        self.assertEqual([other, self.OWNER], metadata['ownerReferences'])

    def test_apply_metadata(self):
        obj = {'metadata': {'name': 'pg', 'labels': {'team': 'a', 'app.kubernetes.io/instance': 'wrong'}}}
        result = apply_metadata(obj, self.OWNER, {'app.kubernetes.io/instance': 'pg'}, {'note': 'x'})
        self.assertEqual({'team': 'a', 'app.kubernetes.io/instance': 'pg'}, result['metadata']['labels'])
        self.assertEqual({'note': 'x'}, result['metadata']['annotations'])
        self.assertEqual('wrong', obj['metadata']['labels']['app.kubernetes.io/instance'])

    def test_set_or_remove(self):
        obj = {'a': 1, 'b': 2}
        set_or_remove(obj, 'a', None)
        set_or_remove(obj, 'b', [])
        set_or_remove(obj, 'c', {'d': 1})
        self.assertEqual({'c': {'d': 1}}, obj)


class ServicePortsTestCase(TestCase):

    def test_merge_keeps_node_port(self):
        current = [{'name': 'api', 'port': 5432, 'targetPort': 'api', 'protocol': 'TCP', 'nodePort': 31000}]
        merged = merge_service_ports(current, [{'name': 'api', 'port': 5432, 'targetPort': 'api'}])
        self.assertEqual(current, merged)

    def test_merge_drops_unknown(self):
        current = [{'name': 'old', 'port': 1234}]
        self.assertEqual([{'name': 'api', 'port': 5432}], merge_service_ports(current, [{'name': 'api', 'port': 5432}]))

    def test_upsert_merges_by_name(self):
        ports = [{'name': 'api', 'port': 5432, 'targetPort': 'api'}]
        previous = [{'name': 'extra', 'port': 8080, 'nodePort': 32000, 'protocol': 'TCP'}]
        result = upsert_service_ports(ports, [{'name': 'extra', 'port': 8080}, {'name': 'api', 'port': 5433}], previous)
        self.assertEqual([{
            'name': 'api',
            'port': 5433,
            'targetPort': 'api'
        }, {
            'name': 'extra',
            'port': 8080,
            'nodePort': 32000,
            'protocol': 'TCP'
        }], result)

    def test_upsert_inherits_target_port(self):
        previous = [{'name': 'pgbouncer', 'port': 6432, 'targetPort': 6432, 'protocol': 'TCP'}]
        result = upsert_service_ports([], [{'name': 'pgbouncer', 'port': 6432}], previous)
        self.assertEqual(previous, result)

    def test_upsert_changed_port_drops_target_port(self):
        previous = [{'name': 'pgbouncer', 'port': 6432, 'targetPort': 6432, 'protocol': 'TCP'}]
        result = upsert_service_ports([], [{'name': 'pgbouncer', 'port': 6433}], previous)
        self.assertEqual([{'name': 'pgbouncer', 'port': 6433, 'protocol': 'TCP'}], result)

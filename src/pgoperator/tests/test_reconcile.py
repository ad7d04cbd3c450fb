from unittest import TestCase

import pykube
from parameterized import parameterized

from pgoperator.k8s_operator.reconcile import Outcome, build_merge_patch, create_or_patch
from pgoperator.tests.testcase import FakeClient, apply_merge_patch


class OutcomeTestCase(TestCase):

    @parameterized.expand([
        (Outcome.CREATED, Outcome.CREATED, Outcome.CREATED),
        (Outcome.CREATED, Outcome.UNCHANGED, Outcome.UNCHANGED),
        (Outcome.UNCHANGED, Outcome.CREATED, Outcome.UNCHANGED),
        (Outcome.CREATED, Outcome.PATCHED, Outcome.PATCHED),
        (Outcome.PATCHED, Outcome.UNCHANGED, Outcome.PATCHED),
        (Outcome.UNCHANGED, Outcome.PATCHED, Outcome.PATCHED),
        (Outcome.UNCHANGED, Outcome.UNCHANGED, Outcome.UNCHANGED),
    ])
    def test_combine(self, first: Outcome, second: Outcome, expected: Outcome) -> None:
        self.assertIs(expected, Outcome.combine(first, second))

    def test_str(self):
        self.assertEqual('created', str(Outcome.CREATED))
        self.assertFalse(Outcome.UNCHANGED.changed)
        self.assertTrue(Outcome.PATCHED.changed)


class MergePatchTestCase(TestCase):

    @parameterized.expand([
        ({'a': 1}, {'a': 1}, {}),
        ({'a': 1}, {'a': 2}, {'a': 2}),
        ({'a': 1, 'b': 2}, {'a': 1}, {'b': None}),
        ({'a': {'b': 1, 'c': 2}}, {'a': {'b': 1, 'c': 3}}, {'a': {'c': 3}}),
        ({'a': [1, 2]}, {'a': [2]}, {'a': [2]}),
        ({'a': 'x'}, {'a': {'b': 1}}, {'a': {'b': 1}}),
    ])
    def test_build(self, original, modified, expected) -> None:
        patch = build_merge_patch(original, modified)
        self.assertEqual(expected, patch)
        self.assertEqual(modified, apply_merge_patch(original, patch))


class CreateOrPatchTestCase(TestCase):

    def setUp(self):
        self.client = FakeClient()

    @staticmethod
    def _set_label(value):

        def mutate(obj):
            obj = dict(obj)
            obj['metadata'] = dict(obj['metadata'])
            obj['metadata']['labels'] = {'key': value}
            return obj

        return mutate

    def test_create(self):
        obj, outcome = create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
        self.assertIs(Outcome.CREATED, outcome)
        self.assertEqual({'key': 'a'}, obj['metadata']['labels'])
        self.assertEqual('default', obj['metadata']['namespace'])
        self.assertEqual('v1', obj['apiVersion'])
        self.assertEqual('ConfigMap', obj['kind'])

    def test_unchanged_issues_no_write(self):
        create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
        _, outcome = create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
        self.assertIs(Outcome.UNCHANGED, outcome)
        self.assertEqual([('create', 'ConfigMap', 'default', 'cm')], self.client.writes)

    def test_patch(self):
        create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
        obj, outcome = create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('b'))
        self.assertIs(Outcome.PATCHED, outcome)
        self.assertEqual({'key': 'b'}, obj['metadata']['labels'])
        self.assertEqual({'key': 'b'}, self.client.get(pykube.ConfigMap, 'default', 'cm')['metadata']['labels'])

    def test_foreign_fields_survive(self):
        self.client.add(pykube.ConfigMap, {'metadata': {'name': 'cm', 'namespace': 'default'}, 'data': {'x': 'y'}})
        obj, outcome = create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
        self.assertIs(Outcome.PATCHED, outcome)
        self.assertEqual({'x': 'y'}, obj['data'])

    def test_errors_propagate(self):
        self.client.add(pykube.ConfigMap, {'metadata': {'name': 'cm', 'namespace': 'default'}})

        def failing_get(*args, **kwargs):
            raise pykube.exceptions.HTTPError(403, 'Forbidden')

        self.client.get = failing_get
        with self.assertRaises(pykube.exceptions.HTTPError):
            create_or_patch(self.client, pykube.ConfigMap, 'default', 'cm', self._set_label('a'))
